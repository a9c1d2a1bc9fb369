import os

import pytest

from layerkit.configuration import Config, ConfigEntry, RegistryConfig, get_config_file, set_if_exists
from layerkit.configuration.file import ConfigFile, LegacyConfigEntry, bool_transformer
from layerkit.exceptions.user import ConfigurationError

GOOD_CONFIG = """\
[docker]
binary=/opt/docker/bin/docker

[registry]
push_attempts=5
backoff_initial_seconds=0.5

[build]
root=/tmp/layerkit-build
cache_root=/tmp/layerkit-cache
"""


@pytest.fixture
def config_path(tmp_path):
    p = tmp_path / "layerkit.config"
    p.write_text(GOOD_CONFIG)
    return p


def test_set_if_exists():
    d = {}
    d = set_if_exists(d, "k", None)
    assert len(d) == 0
    d = set_if_exists(d, "k", 1)
    assert d == {"k": 1}


def test_get_config_file(config_path, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path / "..")
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    assert get_config_file(None) is None

    c = get_config_file(str(config_path))
    assert c is not None
    assert c.legacy_config.get("docker", "binary") == "/opt/docker/bin/docker"

    monkeypatch.setenv("LAYERKIT_CONFIG", str(config_path))
    assert get_config_file(None).location == str(config_path)


def test_config_in_working_directory(config_path, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    c = get_config_file(None)
    assert c is not None
    assert os.path.samefile(c.location, config_path)


def test_internal_section_is_rejected(tmp_path):
    p = tmp_path / "bad.config"
    p.write_text("[internal]\nsecret=1\n")
    with pytest.raises(ConfigurationError):
        ConfigFile(p)


def test_config_entry_precedence(config_path, monkeypatch):
    c = ConfigEntry(LegacyConfigEntry("registry", "push_attempts", int), default_val=3)
    assert c.read() == 3

    cfg = get_config_file(str(config_path))
    assert c.read(cfg) == 5

    monkeypatch.setenv("LAYERKIT_REGISTRY_PUSH_ATTEMPTS", "7")
    assert c.read(cfg) == 7


def test_bool_transformer():
    assert bool_transformer("true") is True
    assert bool_transformer("False") is False
    assert bool_transformer("0") is False
    assert bool_transformer(True) is True


def test_config_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    cfg = Config.auto()
    assert cfg == Config()
    assert cfg.registry == RegistryConfig(push_attempts=3, pull_attempts=3)
    assert cfg.expanded_cache_root == str(tmp_path / "home" / ".layerkit" / "cache")


def test_config_auto(config_path, monkeypatch):
    monkeypatch.setenv("LAYERKIT_BUILD_ROOT", "/from/env")
    cfg = Config.auto(str(config_path))

    assert cfg.docker_binary == "/opt/docker/bin/docker"
    assert cfg.build_root == "/from/env"
    assert cfg.cache_root == "/tmp/layerkit-cache"
    assert cfg.registry.push_attempts == 5
    assert cfg.registry.pull_attempts == 3
    assert cfg.registry.backoff_initial_seconds == 0.5
    assert cfg.registry.backoff_max_seconds == 30.0
