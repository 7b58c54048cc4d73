"""TCP listener and per-connection readers.

Agents connect over plain TCP. Every accepted connection is registered,
then drained by a :class:`SessionReader` until the peer goes away. Agent
payloads are opaque UTF-8 text and are handed to the observer untouched.
"""

from __future__ import annotations

import asyncio
import logging

from switchboard.session.registry import Session, SessionRegistry

logger = logging.getLogger(__name__)

_DEFAULT_READ_SIZE = 1024
_CLOSE_TIMEOUT = 5.0


class SessionReader:
    """Drains one session's inbound bytes until EOF or I/O failure."""

    def __init__(self, registry: SessionRegistry, session: Session, read_size: int = _DEFAULT_READ_SIZE) -> None:
        self.registry = registry
        self.session = session
        self.read_size = read_size

    async def run(self) -> None:
        identity = self.session.identity
        reason = "disconnected"
        try:
            while self.session.is_connected:
                data = await self.session.reader.read(self.read_size)
                if not data:
                    break
                text = data.decode("utf-8", errors="replace")
                if self.registry.observer:
                    self.registry.observer.inbound(identity, text)
        except (OSError, asyncio.IncompleteReadError) as exc:
            reason = f"read error: {exc}"
            logger.debug("Read failed for client %d: %s", identity, exc)
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        except Exception as exc:
            reason = f"reader crashed: {exc}"
            logger.exception("Reader for client %d crashed", identity)
        finally:
            self.registry.remove(identity, reason)


class ConnectionListener:
    """Accepts agent connections and starts one reader per session."""

    def __init__(
        self,
        registry: SessionRegistry,
        host: str = "0.0.0.0",
        port: int = 3001,
        read_size: int = _DEFAULT_READ_SIZE,
    ) -> None:
        self.registry = registry
        self.host = host
        self.port = port
        self.read_size = read_size
        self._server: asyncio.AbstractServer | None = None
        self._stopped = asyncio.Event()

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        """Bind the listening socket. Port 0 picks a free port."""
        self._server = await asyncio.start_server(self._on_connection, self.host, self.port)
        self._stopped.clear()
        sockets = self._server.sockets or ()
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info("Listening on %s:%d", self.host, self.port)

    async def run(self) -> None:
        """Accept connections until :meth:`stop` is called or the task is cancelled."""
        if self._server is None:
            await self.start()
        await self._stopped.wait()

    async def stop(self) -> None:
        """Stop accepting, then close every registered session."""
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        closed = self.registry.close_all("server shutdown")
        try:
            await asyncio.wait_for(server.wait_closed(), timeout=_CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for connections to close")
        self._stopped.set()
        logger.info("Listener stopped (%d sessions closed)", closed)

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    # ── Connection handler ────────────────────────────────────────

    async def _on_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            identity = self.registry.register(reader, writer)
        except Exception:
            logger.exception("Failed to register connection")
            writer.close()
            return
        try:
            session = self.registry.get(identity)
            if session is not None:
                await SessionReader(self.registry, session, self.read_size).run()
        finally:
            self.registry.remove(identity, "connection handler ended")
