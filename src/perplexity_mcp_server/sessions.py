"""Per-session channels for the streamable HTTP transport."""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from typing import Any, Callable, Optional

from .errors import SessionLookupError
from .server import McpServer, ProtocolState

logger = logging.getLogger("perplexity_mcp_server.sessions")

UNINITIALIZED = "uninitialized"
ACTIVE = "active"
CLOSED = "closed"

_BASE36 = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_session_id() -> str:
    """Time component plus a random component; unique enough, not a secret."""
    return f"session-{int(time.time() * 1000)}-{_base36(secrets.randbits(64))}"


class Channel:
    """Live duplex handle backing one session (or one stateless request)."""

    def __init__(self, server: McpServer, session_id: Optional[str] = None):
        self.server = server
        self.session_id = session_id
        self.protocol = ProtocolState()
        self.state = UNINITIALIZED
        self.stream_attached = False
        self._outbound: asyncio.Queue = asyncio.Queue()
        self._close_callbacks: list[Callable[["Channel"], None]] = []

    @property
    def closed(self) -> bool:
        return self.state == CLOSED

    def on_close(self, callback: Callable[["Channel"], None]) -> None:
        self._close_callbacks.append(callback)

    def activate(self, session_id: Optional[str]) -> None:
        if self.closed:
            raise RuntimeError("Cannot activate a closed channel")
        self.session_id = session_id
        self.state = ACTIVE

    async def handle(self, message: Any) -> Optional[dict[str, Any]]:
        if self.closed:
            raise RuntimeError(f"Channel {self.session_id or '<ephemeral>'} is closed")
        return await self.server.handle_message(message, self.protocol)

    def push(self, message: dict[str, Any]) -> None:
        """Queue a server-to-client message for the read-side stream."""
        if self.closed:
            return
        self._outbound.put_nowait(message)

    async def next_outbound(self) -> Optional[dict[str, Any]]:
        """Wait for the next pushed message; None once the channel is closed."""
        if self.closed and self._outbound.empty():
            return None
        return await self._outbound.get()

    def close(self) -> None:
        if self.closed:
            return
        self.state = CLOSED
        # Wake any stream reader.
        self._outbound.put_nowait(None)
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("close callback failed for %s", self.session_id)


class SessionManager:
    """Owns the session-id -> channel map for the HTTP host.

    The map is touched only in ``register`` and in the close callback, each a
    single synchronous step. A preemptive runtime would need a lock around both.
    """

    def __init__(self, server: McpServer, id_factory: Callable[[], str] = generate_session_id):
        self.server = server
        self._id_factory = id_factory
        self._sessions: dict[str, Channel] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def open_channel(self) -> Channel:
        """New channel awaiting its handshake; not yet addressable."""
        return Channel(self.server)

    def open_ephemeral(self) -> Channel:
        """Stateless-mode channel: no id, never enters the map."""
        channel = Channel(self.server)
        channel.activate(None)
        return channel

    def register(self, channel: Channel) -> str:
        session_id = self._id_factory()
        while session_id in self._sessions:
            session_id = self._id_factory()
        channel.activate(session_id)
        self._sessions[session_id] = channel
        channel.on_close(self._forget)
        logger.info("Session initialized: %s", session_id)
        return session_id

    def _forget(self, channel: Channel) -> None:
        if channel.session_id and self._sessions.get(channel.session_id) is channel:
            del self._sessions[channel.session_id]
            logger.info("Session closed: %s", channel.session_id)

    def get(self, session_id: Optional[str]) -> Optional[Channel]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def require(self, session_id: Optional[str]) -> Channel:
        if not session_id:
            raise SessionLookupError("Missing mcp-session-id header")
        channel = self._sessions.get(session_id)
        if channel is None:
            raise SessionLookupError(f"Session not found: {session_id}")
        return channel

    def close_all(self) -> None:
        for channel in list(self._sessions.values()):
            channel.close()
