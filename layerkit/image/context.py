"""
Conventions mapping a project and a target architecture to canonical paths and image references.

Everything here is a pure function of its arguments: the same project and architecture always yield the same
reference and the same archive path, whatever the process or machine, so the host orchestrator can cache build
outputs by their inputs.
"""

from __future__ import annotations

import os
import typing
from dataclasses import dataclass
from pathlib import Path

from layerkit.image.build_result import BuildResult, BuildResults
from layerkit.image.instructions import ExternalReference, SiblingProjectArchive, layer_dir_name
from layerkit.image.reference import Architecture, ImageReference, validate_container_registry_name
from layerkit.exceptions.user import ConfigurationError
from layerkit.loggers import logger

DOCKER_DIR = "docker"
CONTEXT_DIR = "context"
DOCKERFILE = "Dockerfile"
IMAGE_ARCHIVE = "image.tar"
BASE_IMAGE_ARCHIVE = "base.tar"
BASE_IMAGE_REFERENCE = "base-reference.txt"
BUILD_INFO = "build-info.json"
LOCAL_IMPORT_MARKER = "local-import.marker"
APPLICATION_LAYER_CACHE = "application-layers"


@dataclass(frozen=True)
class ProjectIdentity(object):
    """
    Identity of a project producing an image.

    Args:
        name: project name, also the last repository path component of the image
        version: project version, the tag of the image before the architecture suffix
        registry: optional registry host (with port), e.g. ``docker.elastic.co`` or ``localhost:5000``
        namespace: optional repository namespace between the registry and the name
    """

    name: str
    version: str
    registry: typing.Optional[str] = None
    namespace: typing.Optional[str] = None

    def __post_init__(self):
        if self.registry and not validate_container_registry_name(self.registry):
            raise ConfigurationError(
                f"Invalid container registry name: '{self.registry}'.\n Expected formats:\n"
                f"- 'localhost:30000' (for local registries)\n"
                f"- 'ghcr.io' or 'docker.elastic.co'\n"
            )


def image_reference(project: ProjectIdentity, architecture: Architecture) -> ImageReference:
    """
    ``{registry}/{namespace}/{name}:{version}-{arch}``, registry and namespace being optional.
    """
    parts = [p for p in (project.registry, project.namespace, project.name) if p]
    return ImageReference.parse(f"{'/'.join(parts)}:{project.version}-{architecture.docker_name}")


def working_dir(build_root: typing.Union[str, os.PathLike], project: ProjectIdentity, architecture: Architecture) -> Path:
    return Path(build_root) / project.name / DOCKER_DIR / architecture.docker_name


def application_layer_cache_dir(cache_root: typing.Union[str, os.PathLike], architecture: Architecture) -> Path:
    return Path(os.path.expanduser(str(cache_root))) / APPLICATION_LAYER_CACHE / architecture.docker_name


@dataclass(frozen=True)
class BuildContext(object):
    """
    Everything a backend needs to know about where one build reads and writes. Immutable for the duration of the
    build; use :meth:`create` to apply the conventions.
    """

    project: ProjectIdentity
    architecture: Architecture
    working_dir: Path
    context_dir: Path
    application_layer_cache: Path
    archive_path: Path
    base_archive_path: Path
    base_reference_path: Path
    build_info_path: Path
    marker_path: Path

    @classmethod
    def create(
        cls,
        project: ProjectIdentity,
        architecture: Architecture,
        build_root: typing.Union[str, os.PathLike],
        cache_root: typing.Union[str, os.PathLike],
    ) -> BuildContext:
        wd = working_dir(build_root, project, architecture)
        return cls(
            project=project,
            architecture=architecture,
            working_dir=wd,
            context_dir=wd / CONTEXT_DIR,
            application_layer_cache=application_layer_cache_dir(cache_root, architecture),
            archive_path=wd / IMAGE_ARCHIVE,
            base_archive_path=wd / BASE_IMAGE_ARCHIVE,
            base_reference_path=wd / BASE_IMAGE_REFERENCE,
            build_info_path=wd / BUILD_INFO,
            marker_path=wd / LOCAL_IMPORT_MARKER,
        )

    @property
    def image_reference(self) -> ImageReference:
        return image_reference(self.project, self.architecture)

    @property
    def tag(self) -> str:
        return str(self.image_reference)

    @property
    def dockerfile_path(self) -> Path:
        # The manifest sits beside the context directory so that the docker build context is its parent.
        return self.context_dir.parent / DOCKERFILE

    def layer_dir(self, ordinal: int) -> Path:
        return self.context_dir / layer_dir_name(ordinal)


def resolve_base_image(
    sibling: ProjectIdentity,
    target_architecture: Architecture,
    host_architecture: Architecture,
    build_root: typing.Union[str, os.PathLike],
    results: typing.Optional[BuildResults] = None,
) -> typing.Union[ExternalReference, SiblingProjectArchive]:
    """
    Resolves the image of another project to use as a base image.

    When building for the architecture of the host, the sibling's local archive is used, which avoids a registry
    round trip. For any other architecture the sibling image is assumed to be published already and its reference
    is returned.

    :param sibling: the project whose image is the base
    :param target_architecture: architecture of the image being built
    :param host_architecture: architecture of the machine running the build
    :param build_root: build root shared by the projects
    :param results: build results published so far in this run, used to pin the sibling's image id
    """
    reference = image_reference(sibling, target_architecture)
    if target_architecture != host_architecture:
        logger.debug(f"Using published image {reference} of {sibling.name} for {target_architecture.value}")
        return ExternalReference(str(reference))

    wd = working_dir(build_root, sibling, target_architecture)
    result = results.get(sibling.name, target_architecture) if results is not None else None
    if result is None and (wd / BUILD_INFO).exists():
        result = BuildResult.read(wd / BUILD_INFO)
    return SiblingProjectArchive(
        project=sibling.name,
        reference=str(reference),
        archive_path=str(wd / IMAGE_ARCHIVE),
        image_id=result.image_id if result is not None else None,
    )
