"""Operator console.

One line of input per iteration. Lines starting with ``!`` may be
administrative directives (keyword is case-insensitive):

  !list         show connected client ids
  !switch <id>  address one client
  !all          address every client (broadcast)

Anything else, including unrecognised ``!`` lines, is sent verbatim to
the current target.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, TextIO, Union

from switchboard.observer import Observer
from switchboard.session.dispatch import DispatchReport, Dispatcher, TargetSelector
from switchboard.session.registry import MalformedDirective, SessionRegistry, UnknownTarget

logger = logging.getLogger(__name__)

LineSource = Callable[[], Awaitable[str]]


# ── Parsing ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ListClients:
    pass


@dataclass(frozen=True)
class SelectAll:
    pass


@dataclass(frozen=True)
class SwitchTarget:
    identity: int


@dataclass(frozen=True)
class SendDirective:
    text: str


Command = Union[ListClients, SelectAll, SwitchTarget, SendDirective]


def parse_line(line: str) -> Command | None:
    """Parse one operator line. Blank input yields ``None``.

    Raises :class:`MalformedDirective` when ``!switch`` has no integer id.
    """
    text = line.rstrip("\r\n")
    stripped = text.strip()
    if not stripped:
        return None

    if stripped.startswith("!"):
        words = stripped.lower().split()
        keyword = words[0]
        if keyword == "!list" and len(words) == 1:
            return ListClients()
        if keyword == "!all" and len(words) == 1:
            return SelectAll()
        if keyword == "!switch":
            if len(words) < 2:
                raise MalformedDirective(stripped)
            try:
                return SwitchTarget(int(words[1]))
            except ValueError:
                raise MalformedDirective(words[1]) from None

    return SendDirective(text)


class StdinReader:
    """Feeds stdin lines to the event loop from a daemon thread."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdin
        self._queue: asyncio.Queue[str] | None = None
        self._thread: threading.Thread | None = None

    async def __call__(self) -> str:
        if self._queue is None:
            self._queue = asyncio.Queue()
            self._thread = threading.Thread(
                target=self._pump,
                args=(asyncio.get_running_loop(), self._queue),
                name="console-stdin",
                daemon=True,
            )
            self._thread.start()
        return await self._queue.get()

    def _pump(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[str]) -> None:
        while True:
            try:
                line = self.stream.readline()
            except (OSError, ValueError):
                line = ""
            try:
                loop.call_soon_threadsafe(queue.put_nowait, line)
            except RuntimeError:
                return  # loop closed

# ── Console ───────────────────────────────────────────────────────


class CommandConsole:
    """Interactive control surface tying selector and dispatcher together."""

    def __init__(
        self,
        registry: SessionRegistry,
        selector: TargetSelector,
        dispatcher: Dispatcher,
        observer: Observer,
    ) -> None:
        self.registry = registry
        self.selector = selector
        self.dispatcher = dispatcher
        self.observer = observer
        self._announced_empty = False
        self._pending: set[asyncio.Task[DispatchReport]] = set()

    def prompt_text(self) -> str:
        return f"[{self.selector.current}]> "

    async def run(self, read_line: LineSource | None = None) -> None:
        """Process operator lines until end of input."""
        if read_line is None:
            read_line = StdinReader()
        while True:
            if self.registry.count() == 0:
                if not self._announced_empty:
                    self.observer.info("Waiting for clients...")
                    self._announced_empty = True
            else:
                self._announced_empty = False
            self.observer.prompt(self.prompt_text())

            line = await read_line()
            if not line:
                logger.info("Console input closed")
                await self.wait_pending()
                return
            await self.handle(line)

    async def handle(self, line: str) -> None:
        try:
            command = parse_line(line)
        except MalformedDirective as exc:
            self.observer.error(str(exc))
            return
        if command is None:
            return

        if isinstance(command, ListClients):
            self._list_clients()
        elif isinstance(command, SelectAll):
            self.selector.select_all()
            self.observer.info("Broadcast mode: directives go to all clients")
        elif isinstance(command, SwitchTarget):
            try:
                self.selector.select_specific(command.identity)
            except UnknownTarget as exc:
                self.observer.error(str(exc))
            else:
                self.observer.info(f"Switched to client {command.identity}")
        else:
            self._send(command.text)

    def _list_clients(self) -> None:
        sessions = self.registry.sessions()
        if not sessions:
            self.observer.info("No clients connected")
            return
        self.observer.info("Connected clients:")
        for session in sessions:
            self.observer.info(f"  Client ID: {session.identity}  {session.peer}".rstrip())

    def _send(self, directive: str) -> None:
        """Start delivery in the background so a stalled agent never blocks input."""
        target = self.selector.current
        if target.identity is None:
            if self.registry.count() == 0:
                self.observer.error("no clients connected")
                return
        elif target.identity not in self.registry:
            self.observer.error(str(UnknownTarget(target.identity)))
            return
        task = asyncio.create_task(self.dispatcher.send(directive, target))
        self._pending.add(task)
        task.add_done_callback(self._send_done)

    def _send_done(self, task: asyncio.Task[DispatchReport]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, UnknownTarget):
            self.observer.error(str(exc))
        elif exc is not None:
            logger.error("Directive delivery failed", exc_info=exc)
            self.observer.error(f"delivery failed: {exc}")
        else:
            report = task.result()
            if report.delivered:
                ids = ", ".join(str(i) for i in report.delivered)
                self.observer.info(f"Sent to client(s) {ids}")

    @property
    def pending(self) -> int:
        """Number of directives still being delivered."""
        return len(self._pending)

    async def wait_pending(self) -> None:
        """Wait for every in-flight delivery to finish."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def cancel_pending(self) -> None:
        for task in list(self._pending):
            task.cancel()
