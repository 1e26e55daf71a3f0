# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

import asyncio
import json
import socket
from collections.abc import AsyncIterator, Iterator, Mapping
from typing import Any

import docker
import requests
from docker import auth
from docker.api.client import APIClient
from docker.errors import DockerException
from docker.utils import socket as docker_socket
from loguru import logger

from coreason_builder.context import BuildContext
from coreason_builder.engine import BuildEngine
from coreason_builder.models import BuildRequest

BUILDKIT_VERSION = "2"


def _shutdown(sock: Any) -> None:
    # Closing alone does not wake a reader blocked in recv on another thread
    raw = getattr(sock, "_sock", sock)
    try:
        raw.shutdown(socket.SHUT_RDWR)
    except (OSError, AttributeError) as e:
        logger.debug(f"Socket shutdown skipped: {e}")


class DockerBuildStream:
    """Streams the chunked body of a ``POST /build`` response."""

    def __init__(self, api: APIClient, response: requests.Response):
        self._response = response
        self._chunks: Iterator[bytes | str] = api._stream_helper(response, decode=False)
        try:
            # Same path as APIClient._get_raw_response_socket
            self._sock: Any = response.raw._fp.fp.raw
        except AttributeError:
            self._sock = None

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            # Offload the blocking read; it only returns once data arrives or the response is closed
            chunk = await asyncio.to_thread(next, self._chunks, None)
            if chunk is None:
                return
            # Non-chunked responses come back as text
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk

    def close(self) -> None:
        if self._sock is not None:
            _shutdown(self._sock)
        self._response.close()


class DockerSessionConnection:
    """A socket hijacked from ``POST /session``."""

    def __init__(self, sock: Any, response: requests.Response):
        self._sock = sock
        self._response = response

    def read(self, size: int = 4096) -> bytes:
        data: bytes = docker_socket.read(self._sock, size)
        return data

    def close(self) -> None:
        _shutdown(self._sock)
        self._sock.close()
        self._response.close()


class DockerEngine(BuildEngine):
    """
    Docker daemon implementation of the BuildEngine, using BuildKit.
    """

    def __init__(self, base_url: str | None = None, version: str = "auto", timeout: int = 60):
        if base_url:
            self.client = docker.DockerClient(base_url=base_url, version=version, timeout=timeout)
        else:
            self.client = docker.from_env(version=version, timeout=timeout)

    @property
    def api(self) -> APIClient:
        return self.client.api

    def _build_params(self, request: BuildRequest, context: BuildContext) -> dict[str, Any]:
        params: dict[str, Any] = {
            "t": sorted(request.tags),
            "remote": context.remote,
            "q": False,
            "nocache": request.no_cache,
            "rm": True,
            "forcerm": True,
            "pull": request.pull,
            "dockerfile": request.dockerfile,
            "version": BUILDKIT_VERSION,
            "session": request.session_id,
            "buildid": request.build_id,
        }
        if request.build_args:
            params["buildargs"] = json.dumps(request.build_args)
        return {key: value for key, value in params.items() if value is not None}

    def _build_headers(self, request: BuildRequest, context: BuildContext) -> dict[str, str]:
        headers: dict[str, str] = {}
        if context.fileobj is not None:
            headers["Content-Type"] = "application/tar"
        if request.auth_configs:
            headers["X-Registry-Config"] = auth.encode_header(request.auth_configs).decode("ascii")
        return headers

    async def build(self, request: BuildRequest, context: BuildContext) -> DockerBuildStream:
        """
        Submit the build and return the status stream.
        """
        logger.info(f"Submitting build {request.build_id[:12]} (session {request.session_id})")

        def _post() -> requests.Response:
            response = self.api._post(
                self.api._url("/build"),
                data=context.fileobj,
                params=self._build_params(request, context),
                headers=self._build_headers(request, context),
                stream=True,
                timeout=None,
            )
            self.api._raise_for_status(response)
            return response

        try:
            response = await asyncio.to_thread(_post)
        except DockerException as e:
            logger.error(f"Build submission failed: {e}")
            raise
        return DockerBuildStream(self.api, response)

    async def dial_session(self, proto: str, meta: Mapping[str, list[str]]) -> DockerSessionConnection:
        """
        Hijack a connection to the session endpoint.
        """
        headers = {"Connection": "Upgrade", "Upgrade": proto}
        for key, values in meta.items():
            if values:
                headers[key] = ",".join(values)

        def _hijack() -> DockerSessionConnection:
            response = self.api._post(self.api._url("/session"), headers=headers, stream=True)
            return DockerSessionConnection(self.api._get_raw_response_socket(response), response)

        return await asyncio.to_thread(_hijack)

    async def list_images(self, reference: str) -> list[str]:
        images = await asyncio.to_thread(self.client.images.list, filters={"reference": reference})
        return [image.id for image in images]

    def close(self) -> None:
        self.client.close()
