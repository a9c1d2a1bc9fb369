import sys
import types
import typing

import click
from rich.console import Console
from rich.traceback import Traceback

from layerkit.exceptions.base import LayerkitException
from layerkit.exceptions.system import ExternalProcessError, RetriesExhaustedError
from layerkit.image.reference import Architecture
from layerkit.loggers import get_level_from_cli_verbosity, logger


def remove_unwanted_traceback_frames(
    tb: types.TracebackType, unwanted_module_names: typing.List[str]
) -> types.TracebackType:
    """
    Custom function to remove certain frames from the traceback.
    """
    frames = []
    while tb is not None:
        frame = tb.tb_frame
        if not any(module_name in frame.f_code.co_filename for module_name in unwanted_module_names):
            frames.append((frame, tb.tb_lasti, tb.tb_lineno))
        tb = tb.tb_next

    tb_next = None
    for frame, tb_lasti, tb_lineno in reversed(frames):
        tb_next = types.TracebackType(tb_next, frame, tb_lasti, tb_lineno)

    return tb_next


def pretty_print_traceback(e: Exception, verbosity: int = 1):
    """
    Prints the traceback of an error, trimmed of click frames unless the verbosity is 2 or more.
    """
    console = Console()
    unwanted_module_names = ["importlib", "click"]

    if verbosity == 1:
        click.secho(
            f"Frames from the following modules were removed from the traceback: {unwanted_module_names}."
            f" For more verbose output, use the flag -vv.",
            fg="yellow",
        )
        new_tb = remove_unwanted_traceback_frames(e.__traceback__, unwanted_module_names)
        console.print(Traceback.from_exception(type(e), e, new_tb))
    elif verbosity >= 2:
        console.print(Traceback.from_exception(type(e), e, e.__traceback__))
    else:
        raise ValueError(f"Verbosity level must be between 1 and 2. Got {verbosity}")


def pretty_print_exception(e: Exception, verbosity: int = 0):
    """
    Prints the exception in a human readable way. Layerkit errors are reported with their message only, unless a
    traceback is requested with ``-v``.
    """
    if isinstance(e, (click.exceptions.Exit, click.ClickException)):
        raise e

    if verbosity > 0:
        pretty_print_traceback(e, verbosity)
        return

    if isinstance(e, LayerkitException):
        click.secho(f"{type(e).error_code}: {','.join(str(a) for a in e.args)}", fg="red", bold=True)
        if isinstance(e, ExternalProcessError):
            click.secho(f"\tCommand: {' '.join(e.command)}", fg="magenta")
        if isinstance(e, RetriesExhaustedError):
            click.secho(f"\tLast error: {e.last_error}", fg="magenta")
        elif e.__cause__ is not None:
            click.secho(f"\tCaused by: {e.__cause__}", fg="magenta")
        return

    click.secho(f"{type(e).__name__}: {e}", fg="red", bold=True)


class ErrorHandlingCommand(click.Group):
    """
    Helper class that wraps the invoke method of a click command to catch exceptions and print them in a nice way.
    """

    def invoke(self, ctx: click.Context) -> typing.Any:
        verbosity = ctx.params["verbose"]
        logger.setLevel(get_level_from_cli_verbosity(verbosity))
        try:
            return super().invoke(ctx)
        except Exception as e:
            pretty_print_exception(e, verbosity)
            sys.exit(1)


def project_options(f):
    """
    Options identifying the project and architecture an image is built for.
    """
    options = [
        click.option(
            "-n", "--name", required=True, type=str, help="Name of the project, last component of the image repository."
        ),
        click.option(
            "--version",
            "version",
            required=True,
            type=str,
            help="Version of the project, the image tag before the architecture suffix.",
        ),
        click.option("--registry", required=False, type=str, default=None, help="Registry host, e.g. ``ghcr.io``."),
        click.option(
            "--namespace", required=False, type=str, default=None, help="Repository namespace below the registry."
        ),
        click.option(
            "--arch",
            "architecture",
            type=click.Choice([a.value for a in Architecture]),
            default=None,
            help="Target architecture, defaults to the architecture of this machine.",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f
