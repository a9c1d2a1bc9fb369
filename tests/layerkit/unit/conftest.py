import subprocess
import typing
from pathlib import Path

import pytest

from layerkit.image.archive import ArchiveWriter, write_layer_tarball
from layerkit.image.context import BuildContext, ProjectIdentity
from layerkit.image.layers import layer_entries
from layerkit.image.reference import Architecture


@pytest.fixture
def build_context(tmp_path) -> BuildContext:
    return BuildContext.create(
        ProjectIdentity(name="app", version="1.0"), Architecture.AMD64, tmp_path / "build", tmp_path / "cache"
    )


def stage_layer(context: BuildContext, ordinal: int, files: typing.Dict[str, bytes]) -> Path:
    layer_dir = context.layer_dir(ordinal)
    for name, content in files.items():
        p = layer_dir / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(content)
    return layer_dir


def make_base_archive(
    path: Path,
    container_config: typing.Dict[str, typing.Any],
    repo_tags: typing.Sequence[str] = ("base:1.0",),
) -> str:
    """Writes a one layer image archive holding /etc/base.txt and returns its image id."""
    layer_dir = path.parent / "base-layer"
    (layer_dir / "etc").mkdir(parents=True, exist_ok=True)
    (layer_dir / "etc" / "base.txt").write_text("base")
    tarball = path.parent / "base-layer.tar"
    diff_id, _ = write_layer_tarball(layer_entries(layer_dir), tarball)
    config = {
        "architecture": "amd64",
        "os": "linux",
        "config": container_config,
        "rootfs": {"type": "layers", "diff_ids": [diff_id]},
        "history": [{"created_by": "base layer"}],
    }
    with ArchiveWriter(path) as writer:
        writer.add_layer_file(diff_id, tarball)
        return writer.finish(config, list(repo_tags))


def fake_docker_run(image_id: str = "sha256:abc", fail_step: typing.Optional[str] = None):
    """A replacement of subprocess.run answering like the docker CLI."""

    def _run(command, **kwargs):
        args = command[1:]
        step = "inspect" if args[:2] == ["image", "inspect"] else ("build" if args[:2] == ["image", "build"] else args[0])
        if step == fail_step:
            return subprocess.CompletedProcess(command, 1, stdout=b"")
        if step == "inspect":
            return subprocess.CompletedProcess(command, 0, stdout=f"{image_id}\n".encode("utf-8"))
        return subprocess.CompletedProcess(command, 0)

    return _run


@pytest.fixture
def stage():
    return stage_layer


@pytest.fixture
def base_archive():
    return make_base_archive


@pytest.fixture
def docker_run():
    return fake_docker_run
