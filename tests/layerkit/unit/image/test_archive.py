import hashlib
import json
import tarfile

import pytest

from layerkit.exceptions.user import ArchiveReadError
from layerkit.image.archive import (
    LAYER_ENTRY_MTIME,
    MANIFEST,
    ArchiveWriter,
    ImageArchive,
    write_layer_tarball,
)
from layerkit.image.instructions import Owner
from layerkit.image.layers import layer_entries


def test_write_layer_tarball(tmp_path):
    layer_dir = tmp_path / "layer0"
    (layer_dir / "app").mkdir(parents=True)
    (layer_dir / "app" / "app.bin").write_bytes(b"\x00\x01")

    first, size = write_layer_tarball(layer_entries(layer_dir, Owner(1000, 1000)), tmp_path / "a.tar")
    second, _ = write_layer_tarball(layer_entries(layer_dir, Owner(1000, 1000)), tmp_path / "b.tar")

    assert first == second
    assert first == "sha256:" + hashlib.sha256((tmp_path / "a.tar").read_bytes()).hexdigest()
    assert size == (tmp_path / "a.tar").stat().st_size

    with tarfile.open(tmp_path / "a.tar") as tar:
        members = tar.getmembers()
    assert [m.name for m in members] == ["app", "app/app.bin"]
    assert all(m.mtime == LAYER_ENTRY_MTIME for m in members)
    assert all((m.uid, m.gid, m.uname, m.gname) == (1000, 1000, "", "") for m in members)
    assert members[0].isdir() and members[1].isfile()


def test_archive_writer(tmp_path, base_archive):
    path = tmp_path / "base.tar"
    image_id = base_archive(path, {"Entrypoint": ["a"]}, repo_tags=["base:1.0"])

    with ImageArchive(path) as archive:
        assert archive.manifest.repo_tags == ["base:1.0"]
        assert archive.manifest.config == f"{image_id.split(':')[1]}.json"
        assert archive.config["config"] == {"Entrypoint": ["a"]}
        layers = list(archive.layers())
        assert len(layers) == 1
        diff_id, member = layers[0]
        assert diff_id == archive.diff_ids[0]
        blob = archive.extract(member).read()
        assert diff_id == "sha256:" + hashlib.sha256(blob).hexdigest()

    with tarfile.open(path) as tar:
        config_bytes = tar.extractfile(f"{image_id.split(':')[1]}.json").read()
    assert image_id == "sha256:" + hashlib.sha256(config_bytes).hexdigest()


def test_archive_writer_deduplicates_layers(tmp_path):
    blob = tmp_path / "layer.tar"
    blob.write_bytes(b"layer")
    diff_id = "sha256:" + hashlib.sha256(b"layer").hexdigest()

    with ArchiveWriter(tmp_path / "image.tar") as writer:
        writer.add_layer_file(diff_id, blob)
        writer.add_layer_file(diff_id, blob)
        writer.finish({"rootfs": {"type": "layers", "diff_ids": [diff_id, diff_id]}}, [])

    with tarfile.open(tmp_path / "image.tar") as tar:
        names = tar.getnames()
        manifest = json.loads(tar.extractfile(MANIFEST).read())
    assert names.count(f"{diff_id.split(':')[1]}/layer.tar") == 1
    assert len(manifest[0]["Layers"]) == 2


def test_archive_writer_discards_on_error(tmp_path):
    with pytest.raises(RuntimeError):
        with ArchiveWriter(tmp_path / "image.tar"):
            raise RuntimeError("boom")
    assert list(tmp_path.iterdir()) == []


def test_unreadable_archive(tmp_path):
    path = tmp_path / "broken.tar"
    path.write_text("not a tarball")
    with pytest.raises(ArchiveReadError):
        with ImageArchive(path) as archive:
            archive.config


def test_archive_without_manifest(tmp_path):
    path = tmp_path / "empty.tar"
    with tarfile.open(path, "w"):
        pass
    with pytest.raises(ArchiveReadError, match="manifest.json is missing"):
        with ImageArchive(path) as archive:
            archive.config
