from __future__ import annotations

import enum
import os
import typing
from dataclasses import dataclass, field
from pathlib import Path

from dataclasses_json import config, dataclass_json

from layerkit.exceptions.user import ArchiveReadError
from layerkit.image.reference import Architecture
from layerkit.loggers import logger


class BuilderKind(enum.Enum):
    DOCKERFILE = "DOCKERFILE"
    DIRECT = "DIRECT"


@dataclass_json
@dataclass(init=True, repr=True, eq=True, frozen=True)
class BuildResult(object):
    """
    The published outcome of one build. Written as JSON next to the image archive and handed to the builds that
    depend on it.

    Attributes:
        tag: the image reference the archive was tagged with
        builder_kind: which backend produced the image
        image_id: ``sha256:...`` id of the image config
    """

    tag: str
    builder_kind: BuilderKind = field(metadata=config(field_name="builder"))
    image_id: str

    def write(self, path: typing.Union[str, os.PathLike]) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_text(self.to_json())

    @classmethod
    def read(cls, path: typing.Union[str, os.PathLike]) -> BuildResult:
        try:
            return cls.from_json(Path(path).read_text())
        except (OSError, ValueError, KeyError) as e:
            raise ArchiveReadError(f"Unable to read build result {path}") from e


class BuildResults(object):
    """
    Build results published during one run of the host orchestrator, keyed by project and architecture. Dependent
    builds receive this object explicitly to resolve a sibling project's image.
    """

    def __init__(self):
        self._results: typing.Dict[typing.Tuple[str, Architecture], BuildResult] = {}

    def publish(self, project: str, architecture: Architecture, result: BuildResult) -> None:
        logger.debug(f"Publishing build result of {project} ({architecture.value}): {result}")
        self._results[(project, architecture)] = result

    def get(self, project: str, architecture: Architecture) -> typing.Optional[BuildResult]:
        return self._results.get((project, architecture))

    def __contains__(self, key: typing.Tuple[str, Architecture]) -> bool:
        return key in self._results

    def __len__(self) -> int:
        return len(self._results)
