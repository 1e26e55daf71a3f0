# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from typing import Protocol, runtime_checkable

from coreason_builder.context import BuildContext
from coreason_builder.models import BuildRequest


@runtime_checkable
class SessionConnection(Protocol):
    """A raw, hijacked connection to the engine's session endpoint."""

    def read(self, size: int = 4096) -> bytes:
        """Block until data arrives. Returns ``b""`` once the peer or ``close`` ends it."""
        ...

    def close(self) -> None:
        """Close the connection, unblocking any pending ``read``."""
        ...


@runtime_checkable
class BuildStream(Protocol):
    """The streaming body of a build response."""

    def __aiter__(self) -> AsyncIterator[bytes]: ...

    def close(self) -> None:
        """Release the underlying connection, unblocking any pending read."""
        ...


class BuildEngine(ABC):
    """
    Abstract client of a remote build engine.
    Follows the Strategy Pattern.
    """

    @abstractmethod
    async def build(self, request: BuildRequest, context: BuildContext) -> BuildStream:
        """Submit a build.

        Args:
            request: The build parameters.
            context: The prepared build context (tarball or remote reference).

        Returns:
            BuildStream: The JSON message stream produced by the engine.

        Raises:
            docker.errors.APIError: If the engine rejects the request.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def dial_session(self, proto: str, meta: Mapping[str, list[str]]) -> SessionConnection:
        """Open a raw connection for the build session tunnel.

        Args:
            proto: The protocol to upgrade the connection to (e.g. ``h2c``).
            meta: Session headers identifying the session to the engine.

        Returns:
            SessionConnection: The hijacked connection.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def list_images(self, reference: str) -> list[str]:
        """List the ids of local images matching a reference.

        Args:
            reference: An image name, optionally with tag.

        Returns:
            list[str]: Matching image ids, most relevant first.
        """
        pass  # pragma: no cover

    @abstractmethod
    def close(self) -> None:
        """Release the engine client."""
        pass  # pragma: no cover
