import json
import re
import typing
from pathlib import Path
from string import Template

from layerkit.exceptions.user import ConfigurationError
from layerkit.image.build_result import BuilderKind, BuildResult
from layerkit.image.builder import ImageBuilder
from layerkit.image.context import BUILD_INFO, BuildContext
from layerkit.image.daemon import DockerDaemon
from layerkit.image.instructions import Copy, ExternalReference, InstructionModel, SiblingProjectArchive
from layerkit.image.layers import validate_staged_layers
from layerkit.loggers import logger

DOCKER_FILE_TEMPLATE = Template("""\
#############################
#                           #
# Auto generated Dockerfile #
#                           #
#############################

$FROM

$MAINTAINER# FS hierarchy is staged before the build, so we just copy it in
# COPY and RUN commands are kept in instruction order
$LAYER_STEPS
$CONFIG""")

_NEEDS_QUOTING = re.compile(r"[\s\"'\\]")


def _quote(value: str) -> str:
    if value == "" or _NEEDS_QUOTING.search(value):
        return json.dumps(value)
    return value


def _sibling_image_id(source: SiblingProjectArchive) -> str:
    if source.image_id:
        return source.image_id
    build_info = Path(source.archive_path).parent / BUILD_INFO
    if build_info.exists():
        return BuildResult.read(build_info).image_id
    raise ConfigurationError(
        f"Image of {source.project} ({source.reference}) is not built yet, build it before the images based on it"
    )


def _from_section(model: InstructionModel) -> str:
    source = model.base.source
    if isinstance(source, ExternalReference):
        return f"FROM {source.reference}"
    # Pinned to the exact image the sibling project built rather than to its tag
    return f"# {source.project} (a.k.a {source.reference})\nFROM {_sibling_image_id(source)}"


def _layer_steps_section(model: InstructionModel, context: BuildContext) -> str:
    lines = []
    for step in model.layer_steps():
        if isinstance(step, Copy):
            chown = f"--chown={step.owner} " if step.owner is not None else ""
            lines.append(f"COPY {chown}{context.context_dir.name}/{step.content_dir} /")
        else:
            lines.append("RUN " + " && \\\n    ".join(step.commands))
    return "".join(f"{line}\n" for line in lines)


def _config_section(model: InstructionModel) -> str:
    groups = []
    entrypoint = model.get_entrypoint()
    if entrypoint:
        groups.append([f"ENTRYPOINT {json.dumps(entrypoint)}"])
    cmd = model.get_cmd()
    if cmd:
        groups.append([f"CMD {json.dumps(cmd)}"])
    workdir = model.get_workdir()
    if workdir:
        groups.append([f"WORKDIR {workdir}"])
    ports = model.exposed_ports()
    if ports:
        groups.append([f"EXPOSE {' '.join(str(p) for p in ports)}"])
    labels = model.labels()
    if labels:
        groups.append([f"LABEL {k}={_quote(v)}" for k, v in labels.items()])
    envs = model.envs()
    if envs:
        groups.append([f"ENV {k}={_quote(v)}" for k, v in envs.items()])
    return "".join("\n".join(lines) + "\n\n" for lines in groups)


def generate_dockerfile(model: InstructionModel, context: BuildContext) -> str:
    """
    Renders the instructions as a Dockerfile. Sections come in a fixed order: FROM, MAINTAINER, the COPY and RUN
    steps in instruction order, ENTRYPOINT, CMD, WORKDIR, EXPOSE, LABEL and finally ENV.
    """
    maintainer = model.get_maintainer()
    return DOCKER_FILE_TEMPLATE.substitute(
        FROM=_from_section(model),
        MAINTAINER=f"MAINTAINER {maintainer}\n\n" if maintainer is not None else "",
        LAYER_STEPS=_layer_steps_section(model, context),
        CONFIG=_config_section(model),
    )


class DockerfileImageBuilder(ImageBuilder):
    """
    Image builder generating a Dockerfile and running ``docker image build`` then ``docker save`` on it.

    Builds never reuse the docker build cache and run with an empty environment: outputs are cached by the host
    orchestrator, keyed by the build inputs.
    """

    builder_kind = BuilderKind.DOCKERFILE

    def __init__(self, daemon: typing.Optional[DockerDaemon] = None):
        self._daemon = daemon or DockerDaemon()

    @property
    def daemon(self) -> DockerDaemon:
        return self._daemon

    def compile(self, model: InstructionModel, context: BuildContext) -> BuildResult:
        validate_staged_layers(model, context.context_dir)

        dockerfile = context.dockerfile_path
        dockerfile.parent.mkdir(parents=True, exist_ok=True)
        dockerfile.write_text(generate_dockerfile(model, context))
        logger.debug(f"Generated {dockerfile}")

        tag = context.tag
        self._daemon.build(dockerfile.parent, tag, context.architecture.platform)
        self._daemon.save(tag, context.archive_path)
        image_id = self._daemon.image_id(tag)
        logger.info(f"Built image {tag} ({image_id})")

        return self.publish(BuildResult(tag=tag, builder_kind=self.builder_kind, image_id=image_id), context)
