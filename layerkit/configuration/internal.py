from layerkit.configuration.file import ConfigEntry, LegacyConfigEntry


class Docker(object):
    SECTION = "docker"
    BINARY = ConfigEntry(LegacyConfigEntry(SECTION, "binary"), default_val="docker")
    """
    Name or path of the docker CLI. It is resolved against PATH once, before the build runs with an empty
    environment.
    """


class Registry(object):
    SECTION = "registry"
    PUSH_ATTEMPTS = ConfigEntry(LegacyConfigEntry(SECTION, "push_attempts", int), default_val=3)
    PULL_ATTEMPTS = ConfigEntry(LegacyConfigEntry(SECTION, "pull_attempts", int), default_val=3)
    BACKOFF_INITIAL_SECONDS = ConfigEntry(LegacyConfigEntry(SECTION, "backoff_initial_seconds", float), default_val=1.0)
    BACKOFF_MAX_SECONDS = ConfigEntry(LegacyConfigEntry(SECTION, "backoff_max_seconds", float), default_val=30.0)


class Build(object):
    SECTION = "build"
    ROOT = ConfigEntry(LegacyConfigEntry(SECTION, "root"), default_val="build")
    CACHE_ROOT = ConfigEntry(LegacyConfigEntry(SECTION, "cache_root"), default_val="~/.layerkit/cache")
    """
    Root of the project independent caches, e.g. the application layer cache of the direct builder.
    """
