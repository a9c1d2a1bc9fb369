import os
import shutil
import subprocess
import typing
from pathlib import Path

import click

from layerkit.exceptions.system import ExternalProcessError
from layerkit.loggers import logger


class DockerDaemon(object):
    """
    The local image daemon, driven through the docker CLI.

    Commands run with an empty environment by default so that a build never depends on the variables of the host.
    The binary is resolved against the caller's ``PATH`` once, up front.
    """

    def __init__(self, binary: str = "docker", env: typing.Optional[typing.Dict[str, str]] = None):
        self._binary = shutil.which(binary) or binary
        self._env = {} if env is None else dict(env)

    @property
    def binary(self) -> str:
        return self._binary

    def execute(
        self,
        step: str,
        args: typing.Sequence[str],
        cwd: typing.Optional[typing.Union[str, os.PathLike]] = None,
        stdin: typing.Optional[typing.IO[bytes]] = None,
        capture_output: bool = False,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        command = [self._binary, *args]
        click.secho(f"Run command: {' '.join(command)} ", fg="blue")
        p = subprocess.run(
            command,
            cwd=cwd,
            env=self._env,
            stdin=stdin,
            stdout=subprocess.PIPE if capture_output else None,
            stderr=subprocess.DEVNULL if capture_output and not check else None,
        )
        if check and p.returncode != 0:
            raise ExternalProcessError(step, command, p.returncode)
        return p

    def build(self, context_dir: typing.Union[str, os.PathLike], tag: str, platform: str) -> None:
        # --no-cache: images are cached by the host orchestrator, keyed on the build inputs
        self.execute(
            "build",
            ["image", "build", "--progress=plain", "--no-cache", f"--platform={platform}", f"--tag={tag}", "."],
            cwd=context_dir,
        )

    def save(self, tag: str, output: Path) -> None:
        output.parent.mkdir(parents=True, exist_ok=True)
        self.execute("save", ["save", f"--output={output.name}", tag], cwd=output.parent)

    def image_id(self, reference: str) -> str:
        p = self.execute("inspect", ["image", "inspect", "--format", "{{.Id}}", reference], capture_output=True)
        return p.stdout.decode("utf-8").strip().replace("'", "")

    def image_exists(self, image_id: str) -> bool:
        p = self.execute(
            "inspect", ["image", "inspect", "--format", "{{.Id}}", image_id], capture_output=True, check=False
        )
        return p.returncode == 0

    def load(self, archive: typing.Union[str, os.PathLike]) -> None:
        with open(archive, "rb") as archive_input:
            self.execute("load", ["load"], stdin=archive_input)

    def tag(self, image_id: str, tag: str) -> None:
        self.execute("tag", ["tag", image_id, tag])
        logger.info(f"Image {image_id} tagged as {tag}")
