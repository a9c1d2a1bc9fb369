from __future__ import annotations

import configparser
import os
import typing
from dataclasses import dataclass
from pathlib import Path

from layerkit.exceptions import user as _user_exceptions
from layerkit.loggers import logger

LAYERKIT_CONFIG_ENV_VAR = "LAYERKIT_CONFIG"


@dataclass
class LegacyConfigEntry(object):
    """
    Creates a record for the config entry. contains
    Args:
        section: section the option should be found under
        option: the option str to lookup
        type_: Expected type of the value
    """

    section: str
    option: str
    type_: typing.Type = str

    def read_from_env(self, transform: typing.Optional[typing.Callable] = None) -> typing.Optional[typing.Any]:
        """
        Reads the config entry from environment variable, the structure of the env var is
        ``LAYERKIT_{SECTION}_{OPTION}`` all upper cased.
        """
        env = f"LAYERKIT_{self.section.upper()}_{self.option.upper()}"
        v = os.environ.get(env, None)
        if v is None:
            return None
        return transform(v) if transform else v

    def read_from_file(
        self, cfg: typing.Optional[ConfigFile], transform: typing.Optional[typing.Callable] = None
    ) -> typing.Optional[typing.Any]:
        if not cfg:
            return None
        try:
            v = cfg.get(self)
            return transform(v) if transform else v
        except configparser.Error:
            pass
        return None


def bool_transformer(config_val: typing.Any):
    if type(config_val) is str:
        return True if config_val and not config_val.lower() in ["false", "0", "off", "no"] else False
    else:
        return config_val


@dataclass
class ConfigEntry(object):
    """
    A top level Config entry holder. Values are read from the environment first, then from the config file, then
    fall back to ``default_val``.
    """

    legacy: LegacyConfigEntry
    transform: typing.Optional[typing.Callable[[str], typing.Any]] = None
    default_val: typing.Any = None

    legacy_default_transforms = {
        bool: bool_transformer,
        int: int,
        float: float,
    }

    def __post_init__(self):
        if self.legacy:
            if not self.transform and self.legacy.type_ in ConfigEntry.legacy_default_transforms:
                self.transform = ConfigEntry.legacy_default_transforms[self.legacy.type_]

    def read(self, cfg: typing.Optional[ConfigFile] = None) -> typing.Optional[typing.Any]:
        from_env = self.legacy.read_from_env(self.transform)
        if from_env is not None:
            return from_env
        from_file = self.legacy.read_from_file(cfg, self.transform)
        if from_file is not None:
            return from_file
        return self.default_val


class ConfigFile(object):
    def __init__(self, location: typing.Union[str, os.PathLike]):
        """
        Load the config from this location
        """
        self._location = location
        self._legacy_config = self._read_legacy_config(location)

    def _read_legacy_config(self, location) -> configparser.ConfigParser:
        c = configparser.ConfigParser()
        c.read(location)
        if c.has_section("internal"):
            raise _user_exceptions.ConfigurationError(
                f"The config file '{location}' cannot contain a section for internal only configurations."
            )
        return c

    def _get_from_legacy(self, c: LegacyConfigEntry) -> typing.Any:
        if issubclass(c.type_, bool):
            return self._legacy_config.getboolean(c.section, c.option)

        if issubclass(c.type_, int):
            return self._legacy_config.getint(c.section, c.option)

        if issubclass(c.type_, float):
            return self._legacy_config.getfloat(c.section, c.option)

        if issubclass(c.type_, list):
            v = self._legacy_config.get(c.section, c.option)
            return v.split(",")

        return self._legacy_config.get(c.section, c.option)

    def get(self, c: LegacyConfigEntry) -> typing.Any:
        if isinstance(c, LegacyConfigEntry):
            return self._get_from_legacy(c)
        raise NotImplementedError("Support for other config types besides .ini / .config files not yet supported")

    @property
    def location(self):
        return self._location

    @property
    def legacy_config(self) -> configparser.ConfigParser:
        return self._legacy_config


def get_config_file(c: typing.Union[str, os.PathLike, ConfigFile, None]) -> typing.Optional[ConfigFile]:
    """
    Checks if the given argument is a file or a configFile and returns a loaded configFile else returns None
    """
    if c is None:
        from_env = os.environ.get(LAYERKIT_CONFIG_ENV_VAR)
        if from_env:
            logger.info(f"Using configuration from ${LAYERKIT_CONFIG_ENV_VAR} {from_env}")
            return ConfigFile(from_env)

        # See if there's a config file in the current directory where Python is being run from
        current_location_config = Path("layerkit.config")
        if current_location_config.exists():
            logger.info(f"Using configuration from Python process root {current_location_config.absolute()}")
            return ConfigFile(current_location_config.absolute())

        # If not, see if there's a config in the user's home directory
        home_dir_config = Path(Path.home(), ".layerkit", "config")
        if home_dir_config.exists():
            logger.info(f"Using configuration from home directory {home_dir_config.absolute()}")
            return ConfigFile(home_dir_config.absolute())

        # If not, then return None and let caller handle
        return None
    if isinstance(c, ConfigFile):
        return c
    return ConfigFile(c)


def set_if_exists(d: dict, k: str, v: typing.Any) -> dict:
    """
    Given a dict ``d`` sets the key ``k`` with value of config ``v``, if the config value ``v`` is set
    and return the updated dictionary.

    .. note::

        The input dictionary ``d`` will be mutated.
    """
    if v is not None:
        d[k] = v
    return d
