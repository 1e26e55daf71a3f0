# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

import base64
import binascii
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from google.protobuf.message import DecodeError as ProtobufDecodeError

from coreason_builder.exceptions import AuxParseError
from coreason_builder.models.solve import LogStream, SolveStatus, Vertex, VertexLog, VertexStatus
from coreason_builder.trace.status_pb2 import StatusResponse

_STDERR = 2


def decode_trace_payload(payload: Any) -> StatusResponse:
    """Unwrap a ``moby.buildkit.trace`` aux payload into a ``StatusResponse``.

    The payload is a JSON string holding the base64 encoding of the
    protobuf-serialized message.

    Raises:
        AuxParseError: If either the base64 or the protobuf layer is malformed.
    """
    if not isinstance(payload, str):
        raise AuxParseError(f"trace payload must be a string, got {type(payload).__name__}")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuxParseError(f"trace payload is not valid base64: {e}") from e

    response = StatusResponse()
    try:
        response.ParseFromString(raw)
    except ProtobufDecodeError as e:
        raise AuxParseError(f"trace payload is not a valid StatusResponse: {e}") from e
    return response


def _timestamp(message: Any, field: str) -> datetime | None:
    if not message.HasField(field):
        return None
    return getattr(message, field).ToDatetime(tzinfo=timezone.utc)


def _stream(selector: int) -> LogStream:
    return LogStream.STDERR if selector == _STDERR else LogStream.STDOUT


def translate_status(vertexes: Iterable[Any], statuses: Iterable[Any], logs: Iterable[Any]) -> SolveStatus:
    """Copy raw trace records into a normalized ``SolveStatus``.

    No filtering and no state across calls: each call yields one
    self-contained event.

    Raises:
        ValueError: If a timestamp is outside the range ``datetime`` supports.
    """
    return SolveStatus(
        vertexes=[
            Vertex(
                digest=v.digest,
                inputs=list(v.inputs),
                name=v.name,
                started=_timestamp(v, "started"),
                completed=_timestamp(v, "completed"),
                error=v.error,
                cached=v.cached,
            )
            for v in vertexes
        ],
        statuses=[
            VertexStatus(
                id=s.ID,
                vertex=s.vertex,
                name=s.name,
                total=s.total,
                current=s.current,
                timestamp=_timestamp(s, "timestamp"),
                started=_timestamp(s, "started"),
                completed=_timestamp(s, "completed"),
            )
            for s in statuses
        ],
        logs=[
            VertexLog(
                vertex=log.vertex,
                stream=_stream(log.stream),
                data=log.msg,
                timestamp=_timestamp(log, "timestamp"),
            )
            for log in logs
        ],
    )
