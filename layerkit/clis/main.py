import os
import typing

import click
import yaml

from layerkit.clis.utils import ErrorHandlingCommand, project_options
from layerkit.configuration import Config, ConfigFile
from layerkit.configuration.file import LAYERKIT_CONFIG_ENV_VAR
from layerkit.exceptions.user import ConfigurationError
from layerkit.image import (
    Architecture,
    BuildContext,
    BuildResult,
    DirectImageBuilder,
    DockerDaemon,
    DockerfileImageBuilder,
    ImageBuildEngine,
    InstructionModel,
    LocalImporter,
    ProjectIdentity,
    RegistryClient,
    resolve_base_image,
)
from layerkit.image.layer_cache import ApplicationLayerCache
from layerkit.image.context import application_layer_cache_dir
from layerkit.loggers import cli_logger


def _architecture(name: typing.Optional[str]) -> Architecture:
    return Architecture.from_name(name) if name else Architecture.current()


def _context(
    config: Config,
    name: str,
    version: str,
    registry: typing.Optional[str],
    namespace: typing.Optional[str],
    architecture: typing.Optional[str],
) -> BuildContext:
    project = ProjectIdentity(name=name, version=version, registry=registry, namespace=namespace)
    return BuildContext.create(project, _architecture(architecture), config.build_root, config.expanded_cache_root)


def _load_instructions(path: str) -> typing.Dict[str, typing.Any]:
    with open(path, "r") as f:
        d = yaml.safe_load(f)
    if not isinstance(d, dict):
        raise ConfigurationError(f"Instruction file {path} must hold a mapping")
    return d


@click.group("layerkit", cls=ErrorHandlingCommand)
@click.option(
    "-c",
    "--config",
    required=False,
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a layerkit config file, overrides ``$LAYERKIT_CONFIG`` and the default locations.",
)
@click.option(
    "-v",
    "--verbose",
    required=False,
    default=0,
    count=True,
    help="Show tracebacks on errors, -vv for complete tracebacks and debug logs.",
)
@click.pass_context
def main(ctx: click.Context, config: typing.Optional[str], verbose: int):
    """
    Build container images from an ordered list of instructions.
    """
    if config:
        if LAYERKIT_CONFIG_ENV_VAR in os.environ:
            cli_logger.info(
                f"Config file arg {config} will override env var {LAYERKIT_CONFIG_ENV_VAR}: "
                f"{os.environ[LAYERKIT_CONFIG_ENV_VAR]}"
            )
        ctx.obj = Config.auto(ConfigFile(config))
    else:
        ctx.obj = Config.auto()


@main.command("build")
@click.argument("instructions", type=click.Path(exists=True, dir_okay=False))
@project_options
@click.option(
    "--builder",
    type=click.Choice(["dockerfile", "direct"]),
    default="dockerfile",
    show_default=True,
    help="Backend compiling the instructions.",
)
@click.option(
    "--base-project",
    required=False,
    type=str,
    default=None,
    help="``name:version`` of a project built under the same build root whose image is the base image. Used when "
    "the instruction file has no ``from``.",
)
@click.pass_obj
def build(
    config: Config,
    instructions: str,
    name: str,
    version: str,
    registry: typing.Optional[str],
    namespace: typing.Optional[str],
    architecture: typing.Optional[str],
    builder: str,
    base_project: typing.Optional[str],
):
    """
    Build an image from an instruction file. The layers of the copy instructions must be staged as ``layerN``
    directories under the context directory of the project before running this command.
    """
    context = _context(config, name, version, registry, namespace, architecture)
    base = None
    if base_project:
        sibling_name, _, sibling_version = base_project.partition(":")
        if not sibling_version:
            raise click.BadParameter(f"Expected name:version, got {base_project}", param_hint="--base-project")
        sibling = ProjectIdentity(sibling_name, sibling_version, registry=registry, namespace=namespace)
        base = resolve_base_image(sibling, context.architecture, Architecture.current(), config.build_root)

    model = InstructionModel.from_dict(_load_instructions(instructions), base=base)
    if builder == "direct":
        image_builder = DirectImageBuilder(RegistryClient(config.registry))
    else:
        image_builder = DockerfileImageBuilder(DockerDaemon(config.docker_binary))
    result = ImageBuildEngine().build(model, context, image_builder)
    click.secho(f"Built {result.tag} ({result.image_id}) in {context.archive_path}", fg="green")


@main.command("fingerprint")
@click.argument("instructions", type=click.Path(exists=True, dir_okay=False))
def fingerprint(instructions: str):
    """
    Print the digest of an instruction file. Changing labels are left out, so the digest can key the build outputs in
    a cache.
    """
    click.echo(InstructionModel.from_dict(_load_instructions(instructions)).fingerprint())


@main.command("pull")
@click.argument("reference", type=str)
@click.argument("output", type=click.Path(dir_okay=False))
@click.option(
    "--arch",
    "architecture",
    type=click.Choice([a.value for a in Architecture]),
    default=None,
    help="Architecture to pull, defaults to the architecture of this machine.",
)
@click.pass_obj
def pull(config: Config, reference: str, output: str, architecture: typing.Optional[str]):
    """
    Pull an image from a registry into an image archive.
    """
    path = RegistryClient(config.registry).pull(reference, output, _architecture(architecture))
    click.secho(f"Pulled {reference} in {path}", fg="green")


@main.command("push")
@project_options
@click.option("--tag", required=False, type=str, default=None, help="Tag to push as, defaults to the project tag.")
@click.pass_obj
def push(
    config: Config,
    name: str,
    version: str,
    registry: typing.Optional[str],
    namespace: typing.Optional[str],
    architecture: typing.Optional[str],
    tag: typing.Optional[str],
):
    """
    Push the image archive built for a project to its registry.
    """
    context = _context(config, name, version, registry, namespace, architecture)
    DirectImageBuilder(RegistryClient(config.registry)).push(context, tag)
    click.secho(f"Pushed {tag or context.tag}", fg="green")


@main.command("import")
@project_options
@click.option("--tag", required=False, type=str, default=None, help="Local tag, defaults to the tag of the build.")
@click.pass_obj
def import_(
    config: Config,
    name: str,
    version: str,
    registry: typing.Optional[str],
    namespace: typing.Optional[str],
    architecture: typing.Optional[str],
    tag: typing.Optional[str],
):
    """
    Import the image archive built for a project in the local docker daemon.
    """
    context = _context(config, name, version, registry, namespace, architecture)
    if not context.build_info_path.exists():
        raise ConfigurationError(f"No build result at {context.build_info_path}, build the image before importing it")
    result = BuildResult.read(context.build_info_path)
    tag = tag or result.tag
    LocalImporter(DockerDaemon(config.docker_binary)).import_archive(
        context.archive_path, result.image_id, tag, context.marker_path
    )
    click.secho(f"Imported {result.image_id} as {tag}", fg="green")


@main.group("local-cache")
def local_cache():
    """
    Interact with the application layer cache.
    """
    pass


@local_cache.command("clear")
@click.option(
    "--arch",
    "architecture",
    type=click.Choice([a.value for a in Architecture]),
    default=None,
    help="Only clear the cache of this architecture.",
)
@click.pass_obj
def clear_local_cache(config: Config, architecture: typing.Optional[str]):
    """
    This command will remove all cached application layers.
    """
    architectures = [Architecture.from_name(architecture)] if architecture else list(Architecture)
    for arch in architectures:
        ApplicationLayerCache(application_layer_cache_dir(config.expanded_cache_root, arch)).clear()
    click.secho(f"Cleared application layer cache of {', '.join(a.value for a in architectures)}", fg="green")


if __name__ == "__main__":
    main()
