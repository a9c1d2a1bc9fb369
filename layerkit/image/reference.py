"""
Image references and target architectures.

A reference is parsed once, before any external call is made, following the grammar of the docker distribution
reference: ``[registry[:port]/]path[:tag][@digest]``.
"""

from __future__ import annotations

import enum
import platform
import re
import typing
from dataclasses import dataclass

from docker_image import digest as _digest
from docker_image import reference as _reference

from layerkit.exceptions.user import ConfigurationError, InvalidImageReferenceError

DOCKER_HUB = "docker.io"
LEGACY_DOCKER_HUB = "index.docker.io"
OFFICIAL_REPOSITORY_PREFIX = "library/"
DEFAULT_TAG = "latest"


class Architecture(enum.Enum):
    AMD64 = "amd64"
    ARM64 = "arm64"

    @property
    def docker_name(self) -> str:
        return self.value

    @property
    def platform(self) -> str:
        return f"linux/{self.value}"

    @classmethod
    def current(cls) -> Architecture:
        """
        The architecture of the host this process runs on.
        """
        return cls.from_name(platform.machine())

    @classmethod
    def from_name(cls, name: str) -> Architecture:
        normalized = name.lower()
        if normalized in ("x86_64", "amd64", "x64"):
            return cls.AMD64
        if normalized in ("aarch64", "arm64", "armv8"):
            return cls.ARM64
        raise ConfigurationError(f"Unsupported architecture {name}, expected one of {[a.value for a in cls]}")


@dataclass(frozen=True)
class ImageReference(object):
    """
    A parsed registry / repository / tag triple, with an optional digest.
    """

    registry: str
    repository: str
    tag: typing.Optional[str] = DEFAULT_TAG
    digest: typing.Optional[str] = None

    @classmethod
    def parse(cls, reference: str) -> ImageReference:
        if not reference:
            raise InvalidImageReferenceError(reference, "reference is empty")
        try:
            ref = _reference.Reference.parse(reference)
        except (_reference.InvalidReference, _digest.InvalidDigest) as e:
            raise InvalidImageReferenceError(reference, str(e)) from e
        if not ref["name"]:
            raise InvalidImageReferenceError(reference, "reference has no repository name")

        registry, repository = _split_registry(*ref.split_hostname())
        tag = ref["tag"]
        digest = ref["digest"]
        if tag is None and digest is None:
            tag = DEFAULT_TAG
        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def name(self) -> str:
        """Registry and repository, without tag or digest."""
        if self.registry == DOCKER_HUB:
            if self.repository.startswith(OFFICIAL_REPOSITORY_PREFIX):
                return self.repository[len(OFFICIAL_REPOSITORY_PREFIX) :]
            return self.repository
        return f"{self.registry}/{self.repository}"

    def __str__(self) -> str:
        s = self.name
        if self.tag:
            s = f"{s}:{self.tag}"
        if self.digest:
            s = f"{s}@{self.digest}"
        return s


def _split_registry(domain: typing.Optional[str], path: str) -> typing.Tuple[str, str]:
    # The reference grammar captures the first of several components as the domain; it only names a registry when it
    # looks like a host: it has a dot or a port, or is localhost.
    if domain and domain not in (DOCKER_HUB, LEGACY_DOCKER_HUB):
        if "." in domain or ":" in domain or domain == "localhost":
            return domain, path
        path = f"{domain}/{path}"
    if "/" not in path:
        path = f"{OFFICIAL_REPOSITORY_PREFIX}{path}"
    return DOCKER_HUB, path


def validate_container_registry_name(name: str) -> bool:
    """Validate Docker container registry name."""
    registry_pattern = r"^(localhost:\d{1,5}|([a-z\d\._-]+)(:\d{1,5})?)(/[\w\.-]+)*$"
    return bool(re.match(registry_pattern, name))
