import asyncio
import io
import json
import socket
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from docker.errors import APIError

from coreason_builder.context import BuildContext
from coreason_builder.engines.docker import DockerBuildStream, DockerEngine, DockerSessionConnection
from coreason_builder.models import BuildRequest


@pytest.fixture
def mock_docker_client() -> Any:
    with patch("coreason_builder.engines.docker.docker.from_env") as mock:
        yield mock


@pytest.fixture
def docker_engine(mock_docker_client: Any) -> DockerEngine:
    engine = DockerEngine()
    engine.api._url.side_effect = lambda path: f"http+docker://localhost/v1.44{path}"
    return engine


@pytest.fixture
def request_model() -> BuildRequest:
    return BuildRequest(
        tags=frozenset({"example/app:latest"}),
        build_args={"VERSION": "1.2.3"},
        no_cache=True,
        pull=False,
        dockerfile="Dockerfile",
        session_id="session-1",
        build_id="b" * 64,
        auth_configs={"registry.example.com": {"username": "ci", "password": "s3cret"}},
    )


def test_from_env_by_default(mock_docker_client: Any) -> None:
    engine = DockerEngine(version="1.44", timeout=30)
    mock_docker_client.assert_called_once_with(version="1.44", timeout=30)
    assert engine.client == mock_docker_client.return_value


def test_explicit_host() -> None:
    with patch("coreason_builder.engines.docker.docker.DockerClient") as mock_client:
        DockerEngine(base_url="tcp://builder:2375")
    mock_client.assert_called_once_with(base_url="tcp://builder:2375", version="auto", timeout=60)


@pytest.mark.asyncio
async def test_build_posts_buildkit_request(docker_engine: DockerEngine, request_model: BuildRequest) -> None:
    context = BuildContext(fileobj=io.BytesIO(b"tar"), remote=None, dockerfile="Dockerfile")
    response = MagicMock()
    docker_engine.api._post.return_value = response
    docker_engine.api._stream_helper.return_value = iter([b'{"stream": "a"}', '{"stream": "b"}'])

    stream = await docker_engine.build(request_model, context)

    args, kwargs = docker_engine.api._post.call_args
    assert args[0].endswith("/build")
    assert kwargs["data"] is context.fileobj
    assert kwargs["stream"] is True
    assert kwargs["timeout"] is None

    params = kwargs["params"]
    assert params["t"] == ["example/app:latest"]
    assert params["version"] == "2"
    assert params["session"] == "session-1"
    assert params["buildid"] == "b" * 64
    assert params["nocache"] is True
    assert params["pull"] is False
    assert params["dockerfile"] == "Dockerfile"
    assert json.loads(params["buildargs"]) == {"VERSION": "1.2.3"}
    assert "remote" not in params

    headers = kwargs["headers"]
    assert headers["Content-Type"] == "application/tar"
    assert "X-Registry-Config" in headers

    docker_engine.api._raise_for_status.assert_called_once_with(response)
    assert isinstance(stream, DockerBuildStream)
    assert [chunk async for chunk in stream] == [b'{"stream": "a"}', b'{"stream": "b"}']

    stream.close()
    response.close.assert_called_once()


@pytest.mark.asyncio
async def test_build_remote_context(docker_engine: DockerEngine) -> None:
    request = BuildRequest(session_id="s", build_id="b", dockerfile="Dockerfile")
    context = BuildContext(fileobj=None, remote="https://example.com/app.git", dockerfile="Dockerfile")

    await docker_engine.build(request, context)

    kwargs = docker_engine.api._post.call_args.kwargs
    assert kwargs["data"] is None
    assert kwargs["params"]["remote"] == "https://example.com/app.git"
    assert kwargs["params"]["t"] == []
    assert "buildargs" not in kwargs["params"]
    assert kwargs["headers"] == {}


@pytest.mark.asyncio
async def test_build_rejected(docker_engine: DockerEngine, request_model: BuildRequest) -> None:
    docker_engine.api._raise_for_status.side_effect = APIError("400 Client Error: Bad Request")
    context = BuildContext(fileobj=io.BytesIO(b"tar"), remote=None, dockerfile="Dockerfile")

    with pytest.raises(APIError):
        await docker_engine.build(request_model, context)


@pytest.mark.asyncio
async def test_dial_session(docker_engine: DockerEngine) -> None:
    response = MagicMock()
    sock = MagicMock()
    docker_engine.api._post.return_value = response
    docker_engine.api._get_raw_response_socket.return_value = sock

    conn = await docker_engine.dial_session(
        "h2c",
        {"X-Docker-Expose-Session-Uuid": ["session-1"], "X-Docker-Expose-Session-Grpc-Method": []},
    )

    args, kwargs = docker_engine.api._post.call_args
    assert args[0].endswith("/session")
    assert kwargs["headers"] == {
        "Connection": "Upgrade",
        "Upgrade": "h2c",
        "X-Docker-Expose-Session-Uuid": "session-1",
    }
    assert isinstance(conn, DockerSessionConnection)
    docker_engine.api._get_raw_response_socket.assert_called_once_with(response)


@pytest.mark.asyncio
async def test_list_images(docker_engine: DockerEngine) -> None:
    image = MagicMock()
    image.id = "sha256:abc"
    docker_engine.client.images.list.return_value = [image]

    assert await docker_engine.list_images("example/app") == ["sha256:abc"]
    docker_engine.client.images.list.assert_called_once_with(filters={"reference": "example/app"})


def test_close(docker_engine: DockerEngine) -> None:
    docker_engine.close()
    docker_engine.client.close.assert_called_once()


def test_build_stream_close_shuts_down_socket_first() -> None:
    calls = MagicMock()
    response = calls.response
    raw = response.raw._fp.fp.raw._sock

    DockerBuildStream(MagicMock(), response).close()

    raw.shutdown.assert_called_once_with(socket.SHUT_RDWR)
    assert [name for name, _, _ in calls.mock_calls if name.endswith(("shutdown", "close"))] == [
        "response.raw._fp.fp.raw._sock.shutdown",
        "response.close",
    ]


def test_build_stream_close_without_socket() -> None:
    response = MagicMock()
    response.raw = None

    DockerBuildStream(MagicMock(), response).close()

    response.close.assert_called_once()


@pytest.mark.asyncio
async def test_build_stream_close_wakes_blocked_reader() -> None:
    """
    Closing the stream ends a read that is blocked waiting for the daemon.
    """
    local, remote = socket.socketpair()
    body = local.makefile("rb")
    response = MagicMock()
    response.raw._fp.fp = body
    api = MagicMock()
    api._stream_helper.return_value = iter(lambda: body.read1(4096), b"")

    try:
        stream = DockerBuildStream(api, response)

        async def first_chunk() -> bytes | None:
            async for chunk in stream:
                return chunk
            return None

        reader = asyncio.create_task(first_chunk())
        await asyncio.sleep(0.05)
        assert not reader.done()

        stream.close()

        # The read ends as end of stream instead of staying blocked
        assert await asyncio.wait_for(reader, timeout=1) is None
    finally:
        remote.close()
        body.close()
        local.close()


def test_session_connection_read() -> None:
    sock = MagicMock()
    conn = DockerSessionConnection(sock, MagicMock())
    with patch("coreason_builder.engines.docker.docker_socket.read", return_value=b"data") as mock_read:
        assert conn.read(16) == b"data"
    mock_read.assert_called_once_with(sock, 16)


def test_session_connection_close_shuts_down_socket() -> None:
    raw = MagicMock()
    wrapper = MagicMock()
    wrapper._sock = raw
    response = MagicMock()

    DockerSessionConnection(wrapper, response).close()

    raw.shutdown.assert_called_once_with(socket.SHUT_RDWR)
    wrapper.close.assert_called_once()
    response.close.assert_called_once()


def test_session_connection_close_tolerates_closed_socket() -> None:
    raw = MagicMock()
    raw.shutdown.side_effect = OSError("not connected")
    wrapper = MagicMock()
    wrapper._sock = raw

    DockerSessionConnection(wrapper, MagicMock()).close()

    wrapper.close.assert_called_once()
