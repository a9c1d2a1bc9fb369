"""
Reading and writing docker image archives, the tarball format of ``docker save`` / ``docker load``::

    manifest.json                 [{"Config": "<config>.json", "RepoTags": [...], "Layers": ["<id>/layer.tar", ...]}]
    <config>.json                 image configuration, its sha256 is the image id
    <id>/layer.tar                one uncompressed tarball per layer
"""

from __future__ import annotations

import hashlib
import io
import json
import os
import shutil
import tarfile
import tempfile
import typing
from dataclasses import dataclass, field
from pathlib import Path

from layerkit.exceptions.user import ArchiveReadError
from layerkit.image.layers import DIRECTORY, FILE, SYMLINK, LayerEntry

MANIFEST = "manifest.json"
# Fixed modification time of every entry of a generated layer: one second after the epoch.
LAYER_ENTRY_MTIME = 1
_COPY_BUFSIZE = 1024 * 1024


def sha256_digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def _hex(digest: str) -> str:
    return digest.split(":", 1)[-1]


@dataclass
class ArchiveManifest(object):
    config: str
    layers: typing.List[str]
    repo_tags: typing.List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: typing.Dict[str, typing.Any]) -> ArchiveManifest:
        return cls(config=d["Config"], layers=list(d.get("Layers") or []), repo_tags=list(d.get("RepoTags") or []))

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {"Config": self.config, "RepoTags": self.repo_tags, "Layers": self.layers}


class ImageArchive(object):
    """
    Read access to an existing image archive. Use as a context manager.

    .. code-block:: python

        with ImageArchive(path) as archive:
            config = archive.config
            for diff_id, blob in archive.layers():
                ...
    """

    def __init__(self, path: typing.Union[str, os.PathLike]):
        self._path = Path(path)
        self._tar: typing.Optional[tarfile.TarFile] = None
        self._manifest: typing.Optional[ArchiveManifest] = None
        self._config: typing.Optional[typing.Dict[str, typing.Any]] = None

    def __enter__(self) -> ImageArchive:
        try:
            self._tar = tarfile.open(self._path, "r")
        except (OSError, tarfile.TarError) as e:
            raise ArchiveReadError(f"Error reading image archive {self._path}") from e
        return self

    def __exit__(self, *args):
        if self._tar is not None:
            self._tar.close()
            self._tar = None

    @property
    def path(self) -> Path:
        return self._path

    def _member_bytes(self, name: str) -> bytes:
        if self._tar is None:
            raise ArchiveReadError(f"Image archive {self._path} is not open")
        try:
            f = self._tar.extractfile(self._tar.getmember(name))
        except (KeyError, tarfile.TarError) as e:
            raise ArchiveReadError(f"{name} is missing from image archive {self._path}") from e
        if f is None:
            raise ArchiveReadError(f"{name} in image archive {self._path} is not a regular file")
        with f:
            return f.read()

    def _member_json(self, name: str) -> typing.Any:
        try:
            return json.loads(self._member_bytes(name))
        except ValueError as e:
            raise ArchiveReadError(f"{name} in image archive {self._path} is not valid JSON") from e

    @property
    def manifest(self) -> ArchiveManifest:
        if self._manifest is None:
            entries = self._member_json(MANIFEST)
            if not isinstance(entries, list) or not entries:
                raise ArchiveReadError(f"{MANIFEST} of image archive {self._path} has no image")
            try:
                self._manifest = ArchiveManifest.from_dict(entries[0])
            except (KeyError, TypeError) as e:
                raise ArchiveReadError(f"Malformed {MANIFEST} in image archive {self._path}") from e
        return self._manifest

    @property
    def config(self) -> typing.Dict[str, typing.Any]:
        if self._config is None:
            config = self._member_json(self.manifest.config)
            if not isinstance(config, dict):
                raise ArchiveReadError(f"Image config of {self._path} is not a JSON object")
            self._config = config
        return self._config

    @property
    def diff_ids(self) -> typing.List[str]:
        return list(self.config.get("rootfs", {}).get("diff_ids") or [])

    def layers(self) -> typing.Iterator[typing.Tuple[str, tarfile.TarInfo]]:
        """Yields ``(diff_id, member)`` for every layer, bottom to top."""
        diff_ids = self.diff_ids
        layers = self.manifest.layers
        if len(diff_ids) != len(layers):
            raise ArchiveReadError(
                f"Image archive {self._path} lists {len(layers)} layers but its config has {len(diff_ids)} diff ids"
            )
        for diff_id, name in zip(diff_ids, layers):
            try:
                yield diff_id, self._tar.getmember(name)
            except KeyError as e:
                raise ArchiveReadError(f"Layer {name} is missing from image archive {self._path}") from e

    def extract(self, member: tarfile.TarInfo) -> typing.IO[bytes]:
        f = self._tar.extractfile(member)
        if f is None:
            raise ArchiveReadError(f"Layer {member.name} of image archive {self._path} is not a regular file")
        return f


def _entry_tarinfo(entry: LayerEntry) -> tarfile.TarInfo:
    info = tarfile.TarInfo(str(entry.target).lstrip("/"))
    info.mode = entry.mode
    info.uid = entry.uid
    info.gid = entry.gid
    info.uname = ""
    info.gname = ""
    info.mtime = LAYER_ENTRY_MTIME
    if entry.kind == DIRECTORY:
        info.type = tarfile.DIRTYPE
    elif entry.kind == SYMLINK:
        info.type = tarfile.SYMTYPE
        info.linkname = entry.link_target
    elif entry.kind == FILE:
        info.type = tarfile.REGTYPE
        info.size = entry.source.stat().st_size
    else:
        raise ValueError(f"Unknown layer entry kind {entry.kind}")
    return info


def write_layer_tarball(entries: typing.Sequence[LayerEntry], dest: typing.Union[str, os.PathLike]) -> typing.Tuple[str, int]:
    """
    Writes a reproducible, uncompressed layer tarball: entries in the given order, fixed modification time, owners
    as given and no user or group names.

    :return: the diff id (``sha256:...`` of the tarball) and its size in bytes
    """
    with open(dest, "wb") as out:
        with tarfile.open(fileobj=out, mode="w", format=tarfile.GNU_FORMAT) as tar:
            for entry in entries:
                info = _entry_tarinfo(entry)
                if entry.kind == FILE:
                    with open(entry.source, "rb") as f:
                        tar.addfile(info, f)
                else:
                    tar.addfile(info)
    hasher = hashlib.sha256()
    size = 0
    with open(dest, "rb") as f:
        for chunk in iter(lambda: f.read(_COPY_BUFSIZE), b""):
            hasher.update(chunk)
            size += len(chunk)
    return f"sha256:{hasher.hexdigest()}", size


class ArchiveWriter(object):
    """
    Assembles a new image archive. Layers are added bottom to top, then :meth:`finish` writes the config and the
    manifest and moves the archive in place.
    """

    def __init__(self, path: typing.Union[str, os.PathLike]):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        os.close(fd)
        self._tmp_path = Path(tmp)
        self._tar = tarfile.open(self._tmp_path, mode="w", format=tarfile.GNU_FORMAT)
        self._layers: typing.List[str] = []
        self._written: typing.Set[str] = set()

    def __enter__(self) -> ArchiveWriter:
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._tar is not None:
            self._tar.close()
            self._tar = None
        if exc_type is not None and self._tmp_path.exists():
            self._tmp_path.unlink()

    def _add_bytes(self, name: str, data: bytes) -> None:
        info = tarfile.TarInfo(name)
        info.size = len(data)
        info.mode = 0o644
        self._tar.addfile(info, io.BytesIO(data))

    def add_layer(self, diff_id: str, blob: typing.IO[bytes], size: int) -> None:
        name = f"{_hex(diff_id)}/layer.tar"
        if name not in self._written:
            info = tarfile.TarInfo(name)
            info.size = size
            info.mode = 0o644
            self._tar.addfile(info, blob)
            self._written.add(name)
        self._layers.append(name)

    def add_layer_file(self, diff_id: str, path: typing.Union[str, os.PathLike]) -> None:
        with open(path, "rb") as f:
            self.add_layer(diff_id, f, os.path.getsize(path))

    def finish(self, config: typing.Dict[str, typing.Any], repo_tags: typing.Sequence[str]) -> str:
        """
        Writes the config and manifest and publishes the archive.

        :return: the image id, ``sha256:`` digest of the serialized config
        """
        config_bytes = json.dumps(config, separators=(",", ":")).encode("utf-8")
        image_id = sha256_digest(config_bytes)
        config_name = f"{_hex(image_id)}.json"
        self._add_bytes(config_name, config_bytes)
        manifest = ArchiveManifest(config=config_name, layers=self._layers, repo_tags=list(repo_tags))
        self._add_bytes(MANIFEST, json.dumps([manifest.to_dict()], separators=(",", ":")).encode("utf-8"))
        self._tar.close()
        self._tar = None
        shutil.move(str(self._tmp_path), str(self._path))
        return image_id
