import typing

from layerkit.exceptions.user import ConfigurationError
from layerkit.image.build_result import BuildResult, BuildResults
from layerkit.image.builder import ImageBuilder
from layerkit.image.context import BuildContext
from layerkit.image.instructions import InstructionModel
from layerkit.loggers import logger

DEFAULT_BUILDER = "dockerfile"


class ImageBuildEngine:
    """
    ImageBuildEngine holds the image builders by name and runs one of them per build. Every build result is
    published in ``results``, the store handed to the builds of dependent projects.
    """

    _REGISTRY: typing.Dict[str, ImageBuilder] = {}

    def __init__(self, results: typing.Optional[BuildResults] = None):
        self.results = results if results is not None else BuildResults()

    @classmethod
    def register(cls, builder_type: str, image_builder: ImageBuilder):
        cls._REGISTRY[builder_type] = image_builder

    @classmethod
    def builders(cls) -> typing.List[str]:
        return sorted(cls._REGISTRY)

    @classmethod
    def get_builder(cls, builder_type: str) -> ImageBuilder:
        if builder_type not in cls._REGISTRY:
            raise ConfigurationError(f"Image builder {builder_type} is not registered, expected one of {cls.builders()}")
        return cls._REGISTRY[builder_type]

    def build(
        self,
        model: InstructionModel,
        context: BuildContext,
        builder: typing.Union[str, ImageBuilder] = DEFAULT_BUILDER,
    ) -> BuildResult:
        image_builder = self.get_builder(builder) if isinstance(builder, str) else builder
        logger.info(
            f"Building {context.tag} for {context.architecture.value} with the {image_builder.builder_kind.value} builder"
        )
        result = image_builder.compile(model, context)
        self.results.publish(context.project.name, context.architecture, result)
        return result
