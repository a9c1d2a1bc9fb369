import subprocess

import mock
import pytest

from layerkit.exceptions.system import ExternalProcessError
from layerkit.image.daemon import DockerDaemon


def test_image_id():
    with mock.patch(
        "layerkit.image.daemon.subprocess.run",
        return_value=subprocess.CompletedProcess([], 0, stdout=b"'sha256:abc'\n"),
    ) as run:
        assert DockerDaemon("docker").image_id("app:1.0") == "sha256:abc"
    assert run.call_args.kwargs["stdout"] == subprocess.PIPE


def test_failure():
    with mock.patch("layerkit.image.daemon.subprocess.run", return_value=subprocess.CompletedProcess([], 125)):
        with pytest.raises(ExternalProcessError) as e:
            DockerDaemon("docker").tag("sha256:abc", "app:1.0")
    assert e.value.step == "tag"
    assert e.value.returncode == 125
    assert e.value.command[1:] == ["tag", "sha256:abc", "app:1.0"]


def test_environment():
    with mock.patch("layerkit.image.daemon.subprocess.run", return_value=subprocess.CompletedProcess([], 0)) as run:
        DockerDaemon("docker").tag("sha256:abc", "app:1.0")
        DockerDaemon("docker", env={"DOCKER_HOST": "tcp://localhost:2375"}).tag("sha256:abc", "app:1.0")
    assert run.call_args_list[0].kwargs["env"] == {}
    assert run.call_args_list[1].kwargs["env"] == {"DOCKER_HOST": "tcp://localhost:2375"}


def test_binary_is_resolved(monkeypatch):
    monkeypatch.setattr("layerkit.image.daemon.shutil.which", lambda name: f"/usr/local/bin/{name}")
    assert DockerDaemon("docker").binary == "/usr/local/bin/docker"
    monkeypatch.setattr("layerkit.image.daemon.shutil.which", lambda name: None)
    assert DockerDaemon("docker").binary == "docker"
