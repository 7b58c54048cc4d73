"""Observer channel for operator-visible events.

Everything the operator sees goes through an :class:`Observer`: connect
and disconnect notices, agent replies, and directive status lines.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from switchboard.session.registry import Session

logger = logging.getLogger("switchboard")


class Observer:
    """Event sink. The base class only logs."""

    def connected(self, session: Session) -> None:
        logger.info("Client %d connected from %s", session.identity, session.peer or "?")

    def disconnected(self, identity: int, reason: str) -> None:
        logger.info("Client %d disconnected (%s)", identity, reason)

    def inbound(self, identity: int, text: str) -> None:
        logger.debug("Reply from client %d: %r", identity, text)

    def info(self, text: str) -> None:
        logger.debug(text)

    def error(self, text: str) -> None:
        logger.warning(text)

    def prompt(self, text: str) -> None:
        pass


class ConsoleObserver(Observer):
    """Writes human-readable lines to a text stream (stdout by default)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def write(self, text: str, end: str = "\n") -> None:
        with self._lock:
            self.stream.write(text + end)
            self.stream.flush()

    def connected(self, session: Session) -> None:
        super().connected(session)
        self.write(f"\nClient {session.identity} connected")

    def disconnected(self, identity: int, reason: str) -> None:
        super().disconnected(identity, reason)
        self.write(f"\nClient {identity} disconnected ({reason})")

    def inbound(self, identity: int, text: str) -> None:
        super().inbound(identity, text)
        self.write(f"\nReply from client {identity}: {text}")

    def info(self, text: str) -> None:
        super().info(text)
        self.write(text)

    def error(self, text: str) -> None:
        super().error(text)
        self.write(f"error: {text}")

    def prompt(self, text: str) -> None:
        self.write(text, end="")
