import asyncio
import base64
import json
import threading
from collections.abc import AsyncIterator, Mapping
from typing import Any, Generator

import pytest
from loguru import logger

from coreason_builder.context import BuildContext
from coreason_builder.engine import BuildEngine
from coreason_builder.models import BuildRequest
from coreason_builder.trace.status_pb2 import StatusResponse

RESULT_ENVELOPE = {"aux": {"ID": "moby.image.id", "payload": {"ID": "sha256:abc123"}}}


def envelopes(*messages: Any) -> bytes:
    """Concatenate JSON values the way the engine does: no separators."""
    return b"".join(json.dumps(message, ensure_ascii=False).encode("utf-8") for message in messages)


def trace_envelope(vertex_name: str = "[1/2] FROM docker.io/library/alpine", log: bytes = b"") -> dict[str, Any]:
    response = StatusResponse()
    vertex = response.vertexes.add()
    vertex.digest = "sha256:vertex1"
    vertex.name = vertex_name
    vertex.started.seconds = 1700000000
    if log:
        entry = response.logs.add()
        entry.vertex = "sha256:vertex1"
        entry.stream = 2
        entry.msg = log
        entry.timestamp.seconds = 1700000001
    payload = base64.b64encode(response.SerializeToString()).decode("ascii")
    return {"id": "moby.buildkit.trace", "aux": payload}


class FakeStream:
    """A build response body made of fixed chunks."""

    def __init__(self, chunks: list[bytes], delay: float = 0.0):
        self.chunks = chunks
        self.delay = delay
        self.close_calls = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk

    def close(self) -> None:
        self.close_calls += 1


class BlockingConnection:
    """A session connection whose reads block until it is closed."""

    def __init__(self) -> None:
        self._closed = threading.Event()
        self.close_calls = 0

    def read(self, size: int = 4096) -> bytes:
        self._closed.wait(timeout=5)
        return b""

    def close(self) -> None:
        self.close_calls += 1
        self._closed.set()


class FakeEngine(BuildEngine):
    """In-memory engine: answers builds from per-tag chunk lists."""

    def __init__(
        self,
        chunks: list[bytes] | None = None,
        by_tag: Mapping[str, list[bytes]] | None = None,
        failures: Mapping[str, BaseException] | None = None,
        existing: Mapping[str, list[str]] | None = None,
    ):
        self.chunks = chunks if chunks is not None else [envelopes(RESULT_ENVELOPE)]
        self.by_tag = dict(by_tag or {})
        self.failures = dict(failures or {})
        self.existing = dict(existing or {})
        self.requests: list[BuildRequest] = []
        self.contexts: list[BuildContext] = []
        self.streams: list[FakeStream] = []
        self.connections: list[BlockingConnection] = []
        self.lookups: list[str] = []
        self.events: list[str] = []

    async def build(self, request: BuildRequest, context: BuildContext) -> FakeStream:
        self.events.append("build")
        self.requests.append(request)
        self.contexts.append(context)
        tag = next(iter(request.tags), "")
        if tag in self.failures:
            raise self.failures[tag]
        stream = FakeStream(self.by_tag.get(tag, self.chunks))
        self.streams.append(stream)
        return stream

    async def dial_session(self, proto: str, meta: Mapping[str, list[str]]) -> BlockingConnection:
        self.events.append("dialed")
        conn = BlockingConnection()
        self.connections.append(conn)
        return conn

    async def list_images(self, reference: str) -> list[str]:
        self.lookups.append(reference)
        return self.existing.get(reference, [])

    def close(self) -> None:
        pass


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def context_dir(tmp_path: Any) -> Any:
    directory = tmp_path / "context"
    directory.mkdir()
    (directory / "Dockerfile").write_text("FROM alpine\n")
    (directory / "app.txt").write_text("hello\n")
    return directory


@pytest.fixture
def clean_env(monkeypatch: Any) -> None:
    for key in ("REGISTRY_USERNAME", "REGISTRY_PASSWORD", "COREASON_BUILDER_REGISTRY_USERNAME",
                "COREASON_BUILDER_REGISTRY_PASSWORD", "COREASON_BUILDER_TARGET", "COREASON_BUILDER_IMAGES",
                "COREASON_BUILDER_VERBOSE"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def captured_logs() -> Generator[list[str], None, None]:
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
