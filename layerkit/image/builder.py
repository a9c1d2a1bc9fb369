from abc import abstractmethod

from layerkit.image.build_result import BuilderKind, BuildResult
from layerkit.image.context import BuildContext
from layerkit.image.instructions import InstructionModel


class ImageBuilder:
    """
    A backend compiling an :class:`InstructionModel` into an image archive.

    Implementations validate the staged layers against the Copy instructions, write the image archive to
    ``context.archive_path`` and the build result to ``context.build_info_path``. A failed compile never writes a
    build result.
    """

    builder_kind: BuilderKind

    @abstractmethod
    def compile(self, model: InstructionModel, context: BuildContext) -> BuildResult:
        """
        Build the image described by ``model``.

        Returns:
            The build result, also written to ``context.build_info_path``.
        """
        raise NotImplementedError("This method is not implemented in the base class.")

    def publish(self, result: BuildResult, context: BuildContext) -> BuildResult:
        result.write(context.build_info_path)
        return result
