"""
Loggers of layerkit. Interactive runs log through rich; set ``LAYERKIT_RICH_TRACEBACKS=0`` to get one JSON object per
record instead, which is what a host orchestrator collecting build logs wants.
"""

import importlib.util
import logging
import os

if importlib.util.find_spec("pythonjsonlogger.json"):
    # Module was renamed: https://github.com/nhairs/python-json-logger/releases/tag/v3.1.0
    from pythonjsonlogger import json as jsonlogger
else:
    from pythonjsonlogger import jsonlogger

LOGGING_ENV_VAR = "LAYERKIT_LOGGING_LEVEL"
LOGGING_RICH_FMT_ENV_VAR = "LAYERKIT_RICH_TRACEBACKS"

logger = logging.getLogger("layerkit")
cli_logger = logger.getChild("cli")

# Handlers are set on the layerkit logger only, whatever the root logger of the host process does.
logger.propagate = False


def _env_logging_level(default_level: int = logging.WARNING) -> int:
    return int(os.getenv(LOGGING_ENV_VAR, default_level))


def _set_handler(handler: logging.Handler, level: int):
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)


def json_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter(fmt="%(asctime)s %(name)s %(levelname)s %(message)s"))
    return handler


def rich_handler() -> logging.Handler:
    import click
    from rich.console import Console
    from rich.logging import RichHandler

    try:
        width = os.get_terminal_size().columns
    except OSError:
        width = 80

    handler = RichHandler(
        tracebacks_suppress=[click],
        rich_tracebacks=True,
        omit_repeated_times=False,
        show_path=False,
        log_time_format="%H:%M:%S.%f",
        console=Console(width=width, stderr=True),
    )
    handler.setFormatter(logging.Formatter(fmt="%(name)s - %(message)s"))
    return handler


def is_rich_logging_enabled() -> bool:
    return os.environ.get(LOGGING_RICH_FMT_ENV_VAR) != "0"


def initialize_global_loggers():
    handler = rich_handler() if is_rich_logging_enabled() else json_handler()
    _set_handler(handler, _env_logging_level())


def get_level_from_cli_verbosity(verbosity: int) -> int:
    """
    ``-v`` logs the build steps, ``-vv`` everything. Without the flag the level comes from the environment.
    """
    if verbosity == 0:
        return _env_logging_level(default_level=logging.WARNING)
    elif verbosity == 1:
        return logging.INFO
    else:
        return logging.DEBUG


initialize_global_loggers()
