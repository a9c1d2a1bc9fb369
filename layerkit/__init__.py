"""
=====================
Core Layerkit
=====================

.. currentmodule:: layerkit

This package compiles an ordered list of image build instructions into a container image, either through a
generated Dockerfile and the docker CLI or by assembling the image archive directly.

.. autosummary::
   :nosignatures:
   :toctree: generated/

   InstructionModel
   BuildContext
   ProjectIdentity
   Architecture
   ImageReference
   BuildResult
   BuilderKind
   ImageBuildEngine
   DockerfileImageBuilder
   DirectImageBuilder
   RetryPolicy
   LocalImporter
"""

__version__ = "0.0.0+develop"

from layerkit.loggers import logger
from layerkit.image import (
    Architecture,
    BuildContext,
    BuilderKind,
    BuildResult,
    BuildResults,
    DirectImageBuilder,
    DockerfileImageBuilder,
    ImageBuildEngine,
    ImageReference,
    InstructionModel,
    LocalImporter,
    ProjectIdentity,
    RetryPolicy,
)
