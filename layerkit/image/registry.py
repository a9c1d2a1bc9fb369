"""
Registry pull and push through the docker SDK. Credentials are discovered by the SDK from the docker config
(``~/.docker/config.json`` and its credential helpers). Every registry round trip runs under a :class:`RetryPolicy`.
"""

import os
import tempfile
import typing
from pathlib import Path

import docker
import requests
from docker.errors import DockerException

from layerkit.configuration import RegistryConfig
from layerkit.exceptions.system import NetworkError
from layerkit.image.reference import Architecture, ImageReference
from layerkit.image.retry import RetryPolicy
from layerkit.loggers import logger


def _log_retry(action: str, reference: ImageReference) -> typing.Callable[[Exception], None]:
    def _on_retry_error(e: Exception):
        logger.warning(f"Error while trying to {action} {reference}, retrying: {e}")

    return _on_retry_error


class RegistryClient(object):
    def __init__(
        self,
        config: typing.Optional[RegistryConfig] = None,
        client_factory: typing.Callable[[], docker.DockerClient] = docker.from_env,
        sleep: typing.Optional[typing.Callable[[float], None]] = None,
    ):
        self._config = config or RegistryConfig()
        self._client_factory = client_factory
        self._client: typing.Optional[docker.DockerClient] = None
        self._sleep = sleep

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = self._client_factory()
            except DockerException as e:
                raise NetworkError("Unable to connect to the docker engine") from e
        return self._client

    def _policy(self, attempts: int) -> RetryPolicy:
        kwargs = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return RetryPolicy(
            max_attempts=attempts,
            initial_delay=self._config.backoff_initial_seconds,
            max_delay=self._config.backoff_max_seconds,
            retry_on=(NetworkError,),
            **kwargs,
        )

    def pull(self, reference: str, into: typing.Union[str, os.PathLike], architecture: Architecture) -> Path:
        """
        Pulls ``reference`` for ``architecture`` and stores it as an image archive at ``into``.
        """
        ref = ImageReference.parse(reference)
        into = Path(into)
        into.parent.mkdir(parents=True, exist_ok=True)

        def _pull() -> Path:
            try:
                if ref.digest:
                    image = self.client.images.pull(f"{ref.name}@{ref.digest}", platform=architecture.platform)
                else:
                    image = self.client.images.pull(ref.name, tag=ref.tag, platform=architecture.platform)
                fd, tmp = tempfile.mkstemp(prefix=f".{into.name}.", dir=into.parent)
                try:
                    with os.fdopen(fd, "wb") as out:
                        for chunk in image.save(named=False if ref.digest else str(ref)):
                            out.write(chunk)
                    os.replace(tmp, into)
                except BaseException:
                    if os.path.exists(tmp):
                        os.unlink(tmp)
                    raise
            except (DockerException, requests.exceptions.RequestException) as e:
                raise NetworkError(f"Error pulling {ref}") from e
            return into

        logger.info(f"Pulling {ref} ({architecture.value}) into {into}")
        return self._policy(self._config.pull_attempts).execute(_pull, on_retry_error=_log_retry("pull", ref))

    def push(self, archive: typing.Union[str, os.PathLike], reference: str) -> None:
        """
        Loads the image archive in the docker engine, tags it as ``reference`` and pushes it.
        """
        ref = ImageReference.parse(reference)
        try:
            with open(archive, "rb") as f:
                images = self.client.images.load(f)
            if not images:
                raise NetworkError(f"Image archive {archive} holds no image")
            images[0].tag(ref.name, tag=ref.tag)
        except (DockerException, requests.exceptions.RequestException) as e:
            raise NetworkError(f"Error loading image archive {archive}") from e

        def _push() -> None:
            try:
                for line in self.client.images.push(ref.name, tag=ref.tag, stream=True, decode=True):
                    if "error" in line:
                        raise NetworkError(f"Error pushing image archive in registry ({ref}): {line['error']}")
            except (DockerException, requests.exceptions.RequestException) as e:
                raise NetworkError(f"Error pushing image archive in registry ({ref})") from e

        logger.info(f"Pushing {archive} as {ref}")
        self._policy(self._config.push_attempts).execute(_push, on_retry_error=_log_retry("push", ref))
