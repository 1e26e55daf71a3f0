# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

"""Normalized solve-status events consumed by the progress renderer."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class LogStream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class Vertex(BaseModel):
    """One node of the engine's build-step graph.

    Attributes:
        digest: The vertex digest, unique within a build.
        inputs: Digests of the vertices this one depends on.
        name: Human readable step name (e.g. ``[2/4] RUN make``).
        started: When the step started, if it has.
        completed: When the step completed, if it has.
        error: Error text if the step failed.
        cached: Whether the result came from the build cache.
    """

    digest: str
    inputs: list[str] = Field(default_factory=list)
    name: str = ""
    started: datetime | None = None
    completed: datetime | None = None
    error: str = ""
    cached: bool = False


class VertexStatus(BaseModel):
    """Progress of a sub-task (e.g. a layer transfer) of a vertex."""

    id: str
    vertex: str
    name: str = ""
    total: int = 0
    current: int = 0
    timestamp: datetime | None = None
    started: datetime | None = None
    completed: datetime | None = None


class VertexLog(BaseModel):
    """A chunk of output produced by a vertex."""

    vertex: str
    stream: LogStream = LogStream.STDOUT
    data: bytes = b""
    timestamp: datetime | None = None


class SolveStatus(BaseModel):
    """A self-contained progress snapshot. Consumers accumulate across events."""

    vertexes: list[Vertex] = Field(default_factory=list)
    statuses: list[VertexStatus] = Field(default_factory=list)
    logs: list[VertexLog] = Field(default_factory=list)
