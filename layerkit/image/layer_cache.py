import os
import shutil
import tempfile
import typing
from dataclasses import dataclass
from pathlib import Path

from diskcache import Cache

from layerkit.image.archive import write_layer_tarball
from layerkit.image.layers import LayerEntry, entries_digest
from layerkit.loggers import logger

INDEX_DIR = "index"
BLOBS_DIR = "blobs"


@dataclass(frozen=True)
class CachedLayer(object):
    diff_id: str
    size: int
    path: str


class ApplicationLayerCache(object):
    """
    On-disk cache of the application layers produced by the direct builder, keyed by the digest of the layer
    content. The index is a diskcache store; layer tarballs are kept beside it under ``blobs/``.

    The cache directory is shared by every project building for the same architecture. It is assumed to have a
    single writer at a time, no locking is done here.
    """

    def __init__(self, directory: typing.Union[str, os.PathLike]):
        self._directory = Path(directory)
        self._cache: typing.Optional[Cache] = None

    @property
    def directory(self) -> Path:
        return self._directory

    def _index(self) -> Cache:
        if self._cache is None:
            self._cache = Cache(str(self._directory / INDEX_DIR))
        return self._cache

    def close(self):
        if self._cache is not None:
            self._cache.close()
            self._cache = None

    def clear(self):
        """
        Drops every cached layer. Layers from earlier builds are never referenced again once a new build starts.
        """
        self.close()
        if self._directory.exists():
            logger.debug(f"Clearing application layer cache {self._directory}")
            shutil.rmtree(self._directory)

    def __len__(self) -> int:
        return len(self._index())

    def get_or_create(self, entries: typing.Sequence[LayerEntry]) -> CachedLayer:
        """
        Returns the layer tarball for ``entries``, creating it when no layer with the same content is cached.
        """
        key = entries_digest(entries)
        index = self._index()
        hit = index.get(key)
        if hit is not None and Path(hit["path"]).exists():
            logger.debug(f"Reusing cached layer {hit['diff_id']}")
            return CachedLayer(**hit)

        blobs = self._directory / BLOBS_DIR
        blobs.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".layer.", dir=blobs)
        os.close(fd)
        try:
            diff_id, size = write_layer_tarball(entries, tmp)
        except BaseException:
            os.unlink(tmp)
            raise
        final = blobs / f"{diff_id.split(':', 1)[-1]}.tar"
        os.replace(tmp, final)
        layer = CachedLayer(diff_id=diff_id, size=size, path=str(final))
        index.set(key, {"diff_id": layer.diff_id, "size": layer.size, "path": layer.path})
        logger.debug(f"Cached new layer {diff_id} ({size} bytes)")
        return layer
