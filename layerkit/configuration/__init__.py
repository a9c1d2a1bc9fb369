"""
Configuration for layerkit is read, in order of precedence, from ``LAYERKIT_{SECTION}_{OPTION}`` environment
variables, from an ini style config file and from built-in defaults. The config file is looked up from
``$LAYERKIT_CONFIG``, ``./layerkit.config`` and ``~/.layerkit/config``.

.. code-block:: ini

    [docker]
    binary=/usr/local/bin/docker

    [registry]
    push_attempts=3
    backoff_initial_seconds=1
    backoff_max_seconds=30

    [build]
    root=build
    cache_root=~/.layerkit/cache
"""

from __future__ import annotations

import os
import typing
from dataclasses import dataclass, field

from layerkit.configuration import internal as _internal
from layerkit.configuration.file import ConfigEntry, ConfigFile, LegacyConfigEntry, get_config_file, set_if_exists


@dataclass(init=True, repr=True, eq=True, frozen=True)
class RegistryConfig(object):
    """
    Retry behaviour of registry pull and push operations.
    """

    push_attempts: int = 3
    pull_attempts: int = 3
    backoff_initial_seconds: float = 1.0
    backoff_max_seconds: float = 30.0

    @classmethod
    def auto(cls, config_file: typing.Union[str, ConfigFile, None] = None) -> RegistryConfig:
        config_file = get_config_file(config_file)
        kwargs = {}
        kwargs = set_if_exists(kwargs, "push_attempts", _internal.Registry.PUSH_ATTEMPTS.read(config_file))
        kwargs = set_if_exists(kwargs, "pull_attempts", _internal.Registry.PULL_ATTEMPTS.read(config_file))
        kwargs = set_if_exists(
            kwargs, "backoff_initial_seconds", _internal.Registry.BACKOFF_INITIAL_SECONDS.read(config_file)
        )
        kwargs = set_if_exists(kwargs, "backoff_max_seconds", _internal.Registry.BACKOFF_MAX_SECONDS.read(config_file))
        return RegistryConfig(**kwargs)


@dataclass(init=True, repr=True, eq=True, frozen=True)
class Config(object):
    """
    Top level configuration of a layerkit build invocation.

    Attributes:
        docker_binary: name or path of the docker CLI
        build_root: directory under which every project gets its working directory
        cache_root: directory holding project independent caches
        registry: retry settings for registry I/O
    """

    docker_binary: str = "docker"
    build_root: str = "build"
    cache_root: str = "~/.layerkit/cache"
    registry: RegistryConfig = field(default_factory=RegistryConfig)

    @property
    def expanded_cache_root(self) -> str:
        return os.path.expanduser(self.cache_root)

    @classmethod
    def auto(cls, config_file: typing.Union[str, ConfigFile, None] = None) -> Config:
        """
        Automatically constructs the Config Object. The order of precedence is as follows
          1. first try to find any env vars that match the config vars specified in the layerkit config.
          2. If not found in environment then values are read from the config file
          3. If not found in the file, then the default values are used.

        :param config_file: file path to read the config from, if not specified default locations are searched
        :return: Config
        """
        config_file = get_config_file(config_file)
        kwargs = {}
        kwargs = set_if_exists(kwargs, "docker_binary", _internal.Docker.BINARY.read(config_file))
        kwargs = set_if_exists(kwargs, "build_root", _internal.Build.ROOT.read(config_file))
        kwargs = set_if_exists(kwargs, "cache_root", _internal.Build.CACHE_ROOT.read(config_file))
        return Config(registry=RegistryConfig.auto(config_file), **kwargs)


__all__ = [
    "Config",
    "ConfigEntry",
    "ConfigFile",
    "LegacyConfigEntry",
    "RegistryConfig",
    "get_config_file",
]
