"""Control server — wires registry, listener, dispatcher and console."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from switchboard.config import ServerConfig
from switchboard.console import CommandConsole, LineSource
from switchboard.observer import ConsoleObserver, Observer
from switchboard.session.dispatch import Dispatcher, TargetSelector
from switchboard.session.listener import ConnectionListener
from switchboard.session.registry import SessionRegistry

logger = logging.getLogger(__name__)


class ControlServer:
    """Owns every component for one listening port."""

    def __init__(self, config: ServerConfig | None = None, observer: Observer | None = None) -> None:
        self.config = config or ServerConfig()
        self.observer = observer or ConsoleObserver()
        self.registry = SessionRegistry(self.observer)
        self.selector = TargetSelector(self.registry)
        self.dispatcher = Dispatcher(self.registry, self.observer)
        self.listener = ConnectionListener(
            self.registry,
            host=self.config.host,
            port=self.config.port,
            read_size=self.config.read_size,
        )
        self.console = CommandConsole(self.registry, self.selector, self.dispatcher, self.observer)

    @property
    def port(self) -> int:
        return self.listener.port

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        await self.listener.start()
        self.observer.info(f"Server ready on port {self.port}")

    async def run(self, read_line: LineSource | None = None) -> None:
        """Serve until cancelled. The console may finish early (EOF)."""
        if not self.listener.is_serving:
            await self.start()
        console_task = asyncio.create_task(self.console.run(read_line))
        try:
            await self.listener.run()
        finally:
            console_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await console_task

    async def stop(self) -> None:
        await self.listener.stop()
        self.console.cancel_pending()
        await self.console.wait_pending()
        logger.info("Server stopped")
