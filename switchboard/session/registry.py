"""Session registry: the single source of truth for who is connected.

Identities are positive integers handed out in connection order starting
at 1 and never reused. A session leaves the registry exactly once, through
:meth:`SessionRegistry.remove`; whoever wins that removal releases the
connection and reports the disconnect.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from switchboard.observer import Observer

logger = logging.getLogger(__name__)


# ── Errors ────────────────────────────────────────────────────────


class SwitchboardError(Exception):
    """Base class for switchboard errors."""


class SessionConnectionError(SwitchboardError):
    """I/O failure on a session's stream (read or write)."""

    def __init__(self, identity: int, cause: BaseException | None = None) -> None:
        self.identity = identity
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"connection error on client {identity}{detail}")


class UnknownTarget(SwitchboardError):
    """Identity is not present in the registry."""

    def __init__(self, identity: int) -> None:
        self.identity = identity
        super().__init__(f"invalid client id: {identity}")


class MalformedDirective(SwitchboardError):
    """Administrative directive could not be parsed."""

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(f"invalid client id: {text!r}")


# ── Session ───────────────────────────────────────────────────────


class SessionState(str, enum.Enum):
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass(eq=False)
class Session:
    """One accepted agent connection."""

    identity: int
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    peer: str = ""
    connected_at: float = field(default_factory=time.time)
    state: SessionState = SessionState.CONNECTED
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    async def write(self, data: bytes) -> None:
        """Write *data* to the agent; concurrent writers never interleave."""
        async with self.write_lock:
            if not self.is_connected:
                raise SessionConnectionError(self.identity)
            try:
                self.writer.write(data)
                await self.writer.drain()
            except (OSError, RuntimeError) as exc:
                raise SessionConnectionError(self.identity, exc) from exc

    def release(self) -> None:
        """Close the underlying transport."""
        try:
            self.writer.close()
        except (OSError, RuntimeError):
            logger.debug("Error closing transport for client %d", self.identity, exc_info=True)


def _peer_name(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer) if peer else ""


# ── Registry ──────────────────────────────────────────────────────


class SessionRegistry:
    """Concurrency-safe map of identity → connected :class:`Session`."""

    def __init__(self, observer: Observer | None = None) -> None:
        self._sessions: dict[int, Session] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.observer = observer

    def register(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> int:
        """Store a new connected session and return its identity."""
        with self._lock:
            identity = next(self._ids)
            session = Session(identity, reader, writer, peer=_peer_name(writer))
            self._sessions[identity] = session
        logger.debug("Registered client %d (%s)", identity, session.peer)
        if self.observer:
            try:
                self.observer.connected(session)
            except Exception:
                self.remove(identity, "connect notification failed")
                raise
        return identity

    def get(self, identity: int) -> Session | None:
        with self._lock:
            return self._sessions.get(identity)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._sessions

    def remove(self, identity: int, reason: str = "disconnected") -> Session | None:
        """Close and drop *identity*.

        Idempotent: returns the removed session, or ``None`` if another
        caller already removed it (or it never existed).
        """
        with self._lock:
            session = self._sessions.pop(identity, None)
            if session is None:
                return None
            session.state = SessionState.CLOSED
        session.release()
        logger.debug("Removed client %d (%s)", identity, reason)
        if self.observer:
            self.observer.disconnected(identity, reason)
        return session

    def list(self) -> list[int]:
        """Snapshot of registered identities in ascending order."""
        with self._lock:
            return sorted(self._sessions)

    def sessions(self) -> list[Session]:
        """Snapshot of registered sessions in identity order."""
        with self._lock:
            return [self._sessions[i] for i in sorted(self._sessions)]

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __len__(self) -> int:
        return self.count()

    def close_all(self, reason: str = "server shutdown") -> int:
        """Remove every live session. Returns how many were closed."""
        closed = 0
        for identity in self.list():
            if self.remove(identity, reason) is not None:
                closed += 1
        return closed
