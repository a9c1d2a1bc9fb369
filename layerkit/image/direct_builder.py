"""
Image builder assembling the image archive directly, without a docker daemon: the base image archive is read, one
layer is produced per Copy instruction and the new config and manifest are written next to the layers.
"""

import copy
import typing
from pathlib import Path

from layerkit.exceptions.user import ArchiveReadError, ConfigurationError
from layerkit.image.archive import ArchiveWriter, ImageArchive
from layerkit.image.build_result import BuilderKind, BuildResult
from layerkit.image.builder import ImageBuilder
from layerkit.image.context import BuildContext
from layerkit.image.instructions import Copy, ExternalReference, InstructionModel, SiblingProjectArchive
from layerkit.image.layer_cache import ApplicationLayerCache, CachedLayer
from layerkit.image.layers import layer_entries, validate_staged_layers
from layerkit.image.registry import RegistryClient
from layerkit.loggers import logger

# Fixed creation time of the generated images, so that the same inputs give the same image id.
CREATED = "1970-01-01T00:00:00Z"
MAINTAINER_LABEL = "maintainer"


def _merge_env(base_env: typing.Optional[typing.List[str]], env: typing.Dict[str, str]) -> typing.List[str]:
    merged = {}
    for entry in base_env or []:
        key, _, value = entry.partition("=")
        merged[key] = value
    merged.update(env)
    return [f"{k}={v}" for k, v in merged.items()]


def image_config(
    model: InstructionModel,
    context: BuildContext,
    base_config: typing.Dict[str, typing.Any],
    layers: typing.Sequence[typing.Tuple[Copy, CachedLayer]],
    created: str = CREATED,
) -> typing.Dict[str, typing.Any]:
    """
    The config of the new image: the base image config with the instructions of ``model`` applied on top.

    Entrypoint and Cmd are inherited from the base image unless the model sets them.
    """
    config = copy.deepcopy(base_config)
    container = dict(config.get("config") or {})

    labels = dict(container.get("Labels") or {})
    maintainer = model.get_maintainer()
    if maintainer is not None:
        labels[MAINTAINER_LABEL] = str(maintainer)
    labels.update(model.labels())
    if labels:
        container["Labels"] = labels

    envs = model.envs()
    if envs:
        container["Env"] = _merge_env(container.get("Env"), envs)

    entrypoint = model.get_entrypoint()
    if entrypoint:
        container["Entrypoint"] = entrypoint
    cmd = model.get_cmd()
    if cmd:
        container["Cmd"] = cmd

    workdir = model.get_workdir()
    if workdir is not None:
        container["WorkingDir"] = workdir
    ports = model.exposed_ports()
    if ports:
        exposed = dict(container.get("ExposedPorts") or {})
        exposed.update({str(p): {} for p in ports})
        container["ExposedPorts"] = exposed

    config["config"] = container
    rootfs = dict(config.get("rootfs") or {})
    rootfs["type"] = "layers"
    rootfs["diff_ids"] = list(rootfs.get("diff_ids") or []) + [layer.diff_id for _, layer in layers]
    config["rootfs"] = rootfs
    config["history"] = list(config.get("history") or []) + [
        {"created": created, "created_by": f"layerkit: COPY {c.content_dir} /"} for c, _ in layers
    ]
    config["architecture"] = context.architecture.docker_name
    config["os"] = "linux"
    config["created"] = created
    return config


class DirectImageBuilder(ImageBuilder):
    """
    Image builder writing the image archive itself.

    Application layers are kept in a project independent cache under ``context.application_layer_cache``. The cache
    is cleared at the start of every build producing new layers, so it only ever holds the layers of the last build.
    RUN instructions need a container runtime and are not supported.
    """

    builder_kind = BuilderKind.DIRECT

    def __init__(self, registry: typing.Optional[RegistryClient] = None, created: str = CREATED):
        self._registry = registry
        self._created = created

    @property
    def registry(self) -> RegistryClient:
        if self._registry is None:
            self._registry = RegistryClient()
        return self._registry

    def _pulled_base_matches(self, context: BuildContext, reference: str) -> bool:
        # The reference recorded at pull time is authoritative; archives without one are matched on their tags.
        if context.base_reference_path.exists():
            return context.base_reference_path.read_text().strip() == reference
        try:
            with ImageArchive(context.base_archive_path) as archive:
                return reference in archive.manifest.repo_tags
        except ArchiveReadError as e:
            logger.warning(f"Discarding unreadable base image archive {context.base_archive_path}: {e}")
            return False

    def resolve_base_archive(
        self, source: typing.Union[ExternalReference, SiblingProjectArchive], context: BuildContext
    ) -> Path:
        """
        Local path of the base image archive, pulling published base images into ``context.base_archive_path``.
        """
        if isinstance(source, SiblingProjectArchive):
            path = Path(source.archive_path)
            if not path.exists():
                raise ConfigurationError(
                    f"Base image archive {path} of {source.project} does not exist, build {source.project} first"
                )
            return path

        reference = str(source.image_reference)
        path = context.base_archive_path
        if path.exists() and self._pulled_base_matches(context, reference):
            logger.debug(f"Using previously pulled base image {reference} from {path}")
            return path
        if context.base_reference_path.exists():
            context.base_reference_path.unlink()
        path = self.registry.pull(reference, path, context.architecture)
        context.base_reference_path.write_text(reference)
        return path

    def _application_layers(
        self, model: InstructionModel, staged: typing.Dict[int, Path], context: BuildContext
    ) -> typing.List[typing.Tuple[Copy, CachedLayer]]:
        copies = model.copies()
        if not copies:
            return []
        cache = ApplicationLayerCache(context.application_layer_cache)
        try:
            cache.clear()
            return [(c, cache.get_or_create(layer_entries(staged[c.ordinal], c.owner))) for c in copies]
        finally:
            cache.close()

    def compile(self, model: InstructionModel, context: BuildContext) -> BuildResult:
        if model.runs():
            raise ConfigurationError(
                "RUN instructions need a container runtime, build this image with the dockerfile builder"
            )
        staged = validate_staged_layers(model, context.context_dir)
        base_archive = self.resolve_base_archive(model.base.source, context)
        layers = self._application_layers(model, staged, context)

        tag = context.tag
        with ImageArchive(base_archive) as base, ArchiveWriter(context.archive_path) as writer:
            for diff_id, member in base.layers():
                writer.add_layer(diff_id, base.extract(member), member.size)
            for _, layer in layers:
                writer.add_layer_file(layer.diff_id, layer.path)
            image_id = writer.finish(image_config(model, context, base.config, layers, self._created), [tag])
        logger.info(f"Built image {tag} ({image_id}) with {len(layers)} application layers")

        return self.publish(BuildResult(tag=tag, builder_kind=self.builder_kind, image_id=image_id), context)

    def push(self, context: BuildContext, tag: typing.Optional[str] = None) -> None:
        """
        Publishes the image archive built for ``context`` to a registry, as ``tag`` or the conventional tag.
        """
        if not context.archive_path.exists():
            raise ConfigurationError(f"No image archive at {context.archive_path}, build the image before pushing it")
        self.registry.push(context.archive_path, tag or context.tag)
