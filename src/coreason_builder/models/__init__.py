# src/coreason_builder/models/__init__.py

"""
Data models for image builds.
"""

from .build import BuildArgument, BuildRequest, ImageConfig
from .envelope import IMAGE_ID_TAG, TRACE_TAG, BuildResult, JSONError, StatusEnvelope
from .solve import LogStream, SolveStatus, Vertex, VertexLog, VertexStatus

__all__ = [
    "BuildArgument",
    "BuildRequest",
    "BuildResult",
    "IMAGE_ID_TAG",
    "ImageConfig",
    "JSONError",
    "LogStream",
    "SolveStatus",
    "StatusEnvelope",
    "TRACE_TAG",
    "Vertex",
    "VertexLog",
    "VertexStatus",
]
