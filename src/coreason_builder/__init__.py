# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

"""
coreason-builder
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .builder import BuildState, ImageBuilder
from .config import BuilderConfig
from .decoder import decode_build_stream
from .engine import BuildEngine
from .engines.docker import DockerEngine
from .exceptions import (
    AuxParseError,
    BuildError,
    DecodeError,
    DependencyError,
    EngineError,
    MissingResultError,
    SessionError,
)
from .factory import EngineFactory
from .models import BuildRequest, ImageConfig, SolveStatus

__all__ = [
    "AuxParseError",
    "BuildEngine",
    "BuildError",
    "BuildRequest",
    "BuildState",
    "BuilderConfig",
    "DecodeError",
    "DependencyError",
    "DockerEngine",
    "EngineError",
    "EngineFactory",
    "ImageBuilder",
    "ImageConfig",
    "MissingResultError",
    "SessionError",
    "SolveStatus",
    "decode_build_stream",
]
