# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

import codecs
import json
import re
from collections.abc import AsyncIterable
from typing import Any

from loguru import logger
from pydantic import ValidationError

from coreason_builder.channel import TraceChannel
from coreason_builder.exceptions import AuxParseError, DecodeError, EngineError
from coreason_builder.models.envelope import IMAGE_ID_TAG, TRACE_TAG, BuildResult, StatusEnvelope
from coreason_builder.trace import decode_trace_payload, translate_status


class StatusDecoder:
    """Dispatches decoded status envelopes and remembers the last image id.

    Args:
        channel: Where translated trace events are sent.
        forward_trace: Whether trace payloads are decoded at all. When False
            they are ignored without being parsed.
    """

    def __init__(self, channel: TraceChannel | None = None, forward_trace: bool = False):
        self.channel = channel
        self.forward_trace = forward_trace and channel is not None
        self.image_id = ""

    def handle(self, message: Any) -> None:
        """Process one JSON value from the stream.

        Raises:
            DecodeError: If the value is not a status envelope.
            EngineError: If the envelope carries a fatal error.
        """
        try:
            envelope = StatusEnvelope.model_validate(message)
        except ValidationError as e:
            raise DecodeError(f"Invalid build status message: {e}") from e

        error = envelope.fatal_error
        if error is not None:
            raise EngineError(error.message, error.code)

        tag = envelope.aux_tag
        if tag == IMAGE_ID_TAG:
            try:
                self.image_id = self._parse_result(envelope.aux_payload)
            except AuxParseError as e:
                logger.warning(f"Skipping malformed build result: {e}")
        elif tag == TRACE_TAG:
            if self.forward_trace:
                self._forward(envelope.aux_payload)
        elif envelope.stream:
            logger.debug(envelope.stream.rstrip())
        elif envelope.status:
            logger.debug(envelope.status)

    @staticmethod
    def _parse_result(payload: Any) -> str:
        try:
            return BuildResult.model_validate(payload).image_id
        except ValidationError as e:
            raise AuxParseError(str(e)) from e

    def _forward(self, payload: Any) -> None:
        try:
            response = decode_trace_payload(payload)
        except AuxParseError as e:
            logger.debug(f"Skipping malformed trace payload: {e}")
            return
        try:
            event = translate_status(response.vertexes, response.statuses, response.logs)
        except (ValueError, OverflowError) as e:
            logger.debug(f"Skipping untranslatable trace payload: {e}")
            return
        assert self.channel is not None
        self.channel.send(event)


_json = json.JSONDecoder()

# Tokens a chunk boundary can cut short without the prefix already being invalid
_LITERALS = ("true", "false", "null", "NaN", "Infinity", "-Infinity")
_NUMBER_TAIL = re.compile(r"\.|[eE][-+]?")
_UNICODE_ESCAPE_TAIL = re.compile(r"u[0-9a-fA-F]{0,4}")


def _is_truncated(buffer: str, error: json.JSONDecodeError) -> bool:
    """Whether ``buffer`` failed to parse only because it stops early."""
    if error.pos >= len(buffer) or error.msg.startswith("Unterminated string"):
        return True
    tail = buffer[error.pos:]
    if error.msg.startswith("Invalid \\uXXXX escape"):
        return _UNICODE_ESCAPE_TAIL.fullmatch(tail) is not None
    if error.msg == "Expecting value":
        return any(literal.startswith(tail) for literal in _LITERALS)
    # A number cut after its dot or exponent marker
    return _NUMBER_TAIL.fullmatch(tail) is not None


async def decode_build_stream(
    stream: AsyncIterable[bytes],
    channel: TraceChannel | None = None,
    forward_trace: bool = False,
) -> str:
    """Consume a build status stream and return the reported image id.

    The stream holds back-to-back JSON objects with no framing. Decoding
    stops at the first fatal error; everything after it is left unread.
    A stream may end cleanly without ever reporting an image id, in which
    case the empty string is returned.

    Raises:
        DecodeError: If the stream contains malformed JSON, as soon as the
            bytes read so far can no longer start a valid message, or if the
            stream ends in the middle of a message.
        EngineError: If the engine reported a fatal error.
    """
    decoder = StatusDecoder(channel, forward_trace)
    text = codecs.getincrementaldecoder("utf-8")()
    buffered = ""

    async for chunk in stream:
        try:
            buffered += text.decode(chunk)
        except UnicodeDecodeError as e:
            raise DecodeError(f"Build status stream is not valid UTF-8: {e}") from e

        buffered = buffered.lstrip()
        while buffered:
            try:
                message, end = _json.raw_decode(buffered)
            except json.JSONDecodeError as e:
                if _is_truncated(buffered, e):
                    break
                raise DecodeError(f"Malformed build status message: {e}") from e
            decoder.handle(message)
            buffered = buffered[end:].lstrip()

    try:
        buffered += text.decode(b"", final=True)
    except UnicodeDecodeError as e:
        raise DecodeError(f"Build status stream is not valid UTF-8: {e}") from e

    if buffered.strip():
        raise DecodeError(f"Build status stream ended inside a message: {buffered[:80]!r}")

    return decoder.image_id
