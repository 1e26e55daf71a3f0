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
import secrets
from collections.abc import Awaitable, Callable, Mapping

from loguru import logger

from coreason_builder.engine import SessionConnection
from coreason_builder.exceptions import SessionError

Dialer = Callable[[str, Mapping[str, list[str]]], Awaitable[SessionConnection]]
SessionHandler = Callable[[SessionConnection], None]

SESSION_PROTO = "h2c"
HEADER_SESSION_UUID = "X-Docker-Expose-Session-Uuid"
HEADER_SESSION_NAME = "X-Docker-Expose-Session-Name"
HEADER_SESSION_SHARED_KEY = "X-Docker-Expose-Session-Sharedkey"
HEADER_SESSION_METHOD = "X-Docker-Expose-Session-Grpc-Method"


def drain(conn: SessionConnection) -> None:
    """Default handler: hold the connection open until it is closed.

    Whatever the engine sends is read and discarded and nothing is written
    back, so none of the gRPC services an engine may call over the tunnel
    (health checks, auth, secrets, ssh forwarding) are answered. Builds that
    need them must pass a handler that speaks HTTP/2. Registry credentials do
    not depend on it: they travel with the build request in the
    ``X-Registry-Config`` header.
    """
    while conn.read():
        pass


class BuildSession:
    """The side-channel tunnel the engine talks to during a build.

    ``run`` dials the engine and then blocks in the handler for the whole
    build. It returns once ``close`` is called and raises ``SessionError``
    if the tunnel cannot be opened or breaks while open. ``ready`` is set as
    soon as the connection is established.

    The handler is the only code that talks to the engine over the tunnel.
    With the default ``drain`` handler the tunnel keeps the session
    registered for the engine but serves no requests on it.

    If ``run`` is cancelled while dialing, a connection that the dial opens
    afterwards is closed as soon as it arrives.
    """

    def __init__(
        self,
        name: str = "coreason-builder",
        shared_key: str = "",
        handler: SessionHandler | None = None,
    ):
        self.session_id = secrets.token_hex(16)
        self.name = name
        self.shared_key = shared_key
        self.handler = handler or drain
        self.ready = asyncio.Event()
        self._conn: SessionConnection | None = None
        self._conn_released = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def metadata(self) -> dict[str, list[str]]:
        return {
            HEADER_SESSION_UUID: [self.session_id],
            HEADER_SESSION_NAME: [self.name],
            HEADER_SESSION_SHARED_KEY: [self.shared_key],
            HEADER_SESSION_METHOD: [],
        }

    async def run(self, dialer: Dialer) -> None:
        if self._closed:
            return

        dial = asyncio.ensure_future(dialer(SESSION_PROTO, self.metadata()))
        try:
            conn = await asyncio.shield(dial)
        except asyncio.CancelledError:
            # The dial may still complete in its worker thread
            dial.add_done_callback(self._release_dialed)
            raise
        except Exception as e:
            logger.error(f"Failed to open session {self.session_id}: {e}")
            raise SessionError(f"Failed to open session {self.session_id}: {e}") from e

        self._conn = conn
        if self._closed:
            # Closed while dialing
            self._release()
            return

        self.ready.set()
        logger.info(f"Session {self.session_id} established")
        try:
            await asyncio.to_thread(self.handler, conn)
        except asyncio.CancelledError:
            self._release()
            raise
        except Exception as e:
            if self._closed:
                logger.debug(f"Session {self.session_id} handler stopped after close: {e}")
                return
            logger.error(f"Session {self.session_id} failed: {e}")
            raise SessionError(f"Session {self.session_id} failed: {e}") from e
        logger.info(f"Session {self.session_id} ended")

    def _release_dialed(self, dial: asyncio.Future[SessionConnection]) -> None:
        if dial.cancelled() or dial.exception() is not None:
            return
        logger.debug(f"Releasing session {self.session_id} connection opened after cancellation")
        self._conn = dial.result()
        self._release()

    def _release(self) -> None:
        if self._conn is None or self._conn_released:
            return
        self._conn_released = True
        try:
            self._conn.close()
        except OSError as e:
            logger.warning(f"Error closing session {self.session_id}: {e}")

    def close(self) -> None:
        """Close the tunnel. Later calls are ignored."""
        if self._closed:
            logger.debug(f"Session {self.session_id} already closed")
            return
        self._closed = True
        self._release()
