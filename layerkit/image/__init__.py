"""
This module provides the image build pipeline: instructions, build conventions and the image builders
"""

from .build_result import BuilderKind, BuildResult, BuildResults
from .context import BuildContext, ProjectIdentity, resolve_base_image
from .daemon import DockerDaemon
from .direct_builder import DirectImageBuilder
from .dockerfile_builder import DockerfileImageBuilder, generate_dockerfile
from .engine import ImageBuildEngine
from .instructions import ExternalReference, InstructionModel, SiblingProjectArchive
from .local_import import LocalImporter
from .reference import Architecture, ImageReference
from .registry import RegistryClient
from .retry import RetryPolicy

ImageBuildEngine.register("dockerfile", DockerfileImageBuilder())
ImageBuildEngine.register("direct", DirectImageBuilder())
