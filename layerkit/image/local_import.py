import os
import typing
from pathlib import Path

from layerkit.image.daemon import DockerDaemon
from layerkit.loggers import logger


class LocalImporter(object):
    """
    Imports image archives in the local docker daemon.

    Importing is idempotent: the archive is loaded only when the daemon doesn't know the image id yet, the image is
    then always (re)tagged. A marker file holding the tag is written last, the host orchestrator compares its content
    with the expected tag to know whether the import is up to date.
    """

    def __init__(self, daemon: typing.Optional[DockerDaemon] = None):
        self._daemon = daemon or DockerDaemon()

    def import_archive(
        self,
        archive: typing.Union[str, os.PathLike],
        image_id: str,
        tag: str,
        marker_path: typing.Union[str, os.PathLike],
    ) -> None:
        if self._daemon.image_exists(image_id):
            logger.info(f"Docker daemon already has {image_id}, skipping load of {archive}")
        else:
            logger.info(f"Loading {archive} in the docker daemon")
            self._daemon.load(archive)
        self._daemon.tag(image_id, tag)

        marker_path = Path(marker_path)
        marker_path.parent.mkdir(parents=True, exist_ok=True)
        marker_path.write_text(tag)

    @staticmethod
    def is_up_to_date(marker_path: typing.Union[str, os.PathLike], tag: str) -> bool:
        marker_path = Path(marker_path)
        return marker_path.exists() and marker_path.read_text() == tag
