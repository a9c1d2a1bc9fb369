"""
Staged layer handling shared by both backends: binding Copy ordinals to the ``layerN`` directories staged under the
context directory, walking their content and detecting the permissions of every entry.
"""

from __future__ import annotations

import hashlib
import os
import re
import stat
import typing
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from layerkit.exceptions.user import ConfigurationError, PermissionDetectionError
from layerkit.image.instructions import LAYER_DIR_PREFIX, InstructionModel, Owner
from layerkit.loggers import logger

_LAYER_DIR_RE = re.compile(rf"^{LAYER_DIR_PREFIX}(\d+)$")

FILE = "file"
DIRECTORY = "directory"
SYMLINK = "symlink"


def staged_layer_dirs(context_dir: Path) -> typing.Dict[int, Path]:
    """Non-empty ``layerN`` directories present under the context directory, by ordinal."""
    staged = {}
    if not context_dir.is_dir():
        return staged
    for child in context_dir.iterdir():
        m = _LAYER_DIR_RE.match(child.name)
        if m and child.is_dir() and any(child.iterdir()):
            staged[int(m.group(1))] = child
    return staged


def validate_staged_layers(model: InstructionModel, context_dir: Path) -> typing.Dict[int, Path]:
    """
    Checks that the Copy ordinals of the model and the non-empty staged ``layerN`` directories are the same set.

    :return: the staged directory of every Copy ordinal
    :raises ConfigurationError: when a Copy has no staged content, or staged content has no Copy
    """
    expected = {c.ordinal: context_dir / c.content_dir for c in model.copies()}
    if expected and not context_dir.is_dir():
        raise ConfigurationError(f"Can't build docker image, missing working directory {context_dir}")

    for ordinal, layer_dir in sorted(expected.items()):
        if not layer_dir.is_dir():
            raise ConfigurationError(f"Error in copy configuration : {layer_dir.name} is not an existing folder.")
        if not any(layer_dir.iterdir()):
            raise ConfigurationError(f"Error in copy configuration : {layer_dir.name} is empty.")

    unexpected = sorted(set(staged_layer_dirs(context_dir)) - set(expected))
    if unexpected:
        names = ", ".join(f"{LAYER_DIR_PREFIX}{o}" for o in unexpected)
        raise ConfigurationError(f"Error in copy configuration : staged {names} in {context_dir} match no copy instruction.")
    return expected


def _posix_permissions(path: typing.Union[str, os.PathLike]) -> int:
    if os.name != "posix":
        raise NotImplementedError(f"POSIX permissions are not available on {os.name}")
    return stat.S_IMODE(os.lstat(path).st_mode) & 0o777


def detect_permissions(path: typing.Union[str, os.PathLike]) -> int:
    """
    Permission bits of ``path``. Where POSIX permission bits can't be queried they are inferred from what the
    current process may do with the file:

    * readable: read for owner, group and others
    * writable: write for owner and group
    * executable or a directory: execute for owner, group and others
    """
    try:
        return _posix_permissions(path)
    except NotImplementedError:
        mode = 0
        if os.access(path, os.R_OK):
            mode |= stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH
        if os.access(path, os.W_OK):
            mode |= stat.S_IWUSR | stat.S_IWGRP
        if os.access(path, os.X_OK) or os.path.isdir(path):
            mode |= stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
        return mode
    except OSError as e:
        raise PermissionDetectionError(path) from e


@dataclass(frozen=True)
class LayerEntry(object):
    source: Path
    target: PurePosixPath
    kind: str
    mode: int
    uid: int = 0
    gid: int = 0
    link_target: typing.Optional[str] = None


def layer_entries(layer_dir: Path, owner: typing.Optional[Owner] = None) -> typing.List[LayerEntry]:
    """
    Every directory, regular file and symlink under ``layer_dir``, targeted at the same relative path under ``/``,
    sorted by target path. The owner, when given, applies to every entry of the layer.
    """
    uid, gid = (owner.uid, owner.gid) if owner is not None else (0, 0)
    entries = []
    for root, dirnames, files in os.walk(layer_dir, topdown=True, followlinks=False):
        dirnames.sort()
        for name in dirnames + sorted(files):
            source = Path(root) / name
            target = PurePosixPath("/") / source.relative_to(layer_dir).as_posix()
            if source.is_symlink():
                entries.append(LayerEntry(source, target, SYMLINK, 0o777, uid, gid, os.readlink(source)))
            elif source.is_dir():
                entries.append(LayerEntry(source, target, DIRECTORY, detect_permissions(source), uid, gid))
            elif stat.S_ISREG(os.lstat(source).st_mode):
                entries.append(LayerEntry(source, target, FILE, detect_permissions(source), uid, gid))
            else:
                logger.info(f"Skipping special file {source}")
    entries.sort(key=lambda e: str(e.target))
    return entries


def _filehash_update(path: typing.Union[os.PathLike, str], hasher) -> None:
    blocksize = 65536
    with open(path, "rb") as f:
        chunk = f.read(blocksize)
        while chunk:
            hasher.update(chunk)
            chunk = f.read(blocksize)


def entries_digest(entries: typing.Sequence[LayerEntry]) -> str:
    """
    Content digest of a layer: target paths, kinds, modes, owners, link targets and file contents. Two layers with
    the same digest produce the same layer tarball.
    """
    hasher = hashlib.sha256()
    for e in entries:
        hasher.update(f"{e.target}\0{e.kind}\0{e.mode:o}\0{e.uid}:{e.gid}\0{e.link_target or ''}\0".encode("utf-8"))
        if e.kind == FILE:
            _filehash_update(e.source, hasher)
    return hasher.hexdigest()
