"""pytest configuration and shared doubles for Switchboard tests."""

from __future__ import annotations

import asyncio

import pytest

from switchboard.observer import Observer
from switchboard.session.dispatch import Dispatcher, TargetSelector
from switchboard.session.registry import SessionRegistry


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


# ── Stream doubles ────────────────────────────────────────────────


class FakeStreamReader:
    """Fake asyncio.StreamReader returning pre-loaded chunks, then EOF."""

    def __init__(self, chunks: list[bytes] | None = None):
        self._chunks = list(chunks or [])

    async def read(self, n: int = -1) -> bytes:
        if not self._chunks:
            return b""
        chunk = self._chunks.pop(0)
        if isinstance(chunk, BaseException):
            raise chunk
        return chunk


class FakeStreamWriter:
    """Fake asyncio.StreamWriter that captures written bytes."""

    def __init__(self, peer=("127.0.0.1", 40000)):
        self.writes: list[bytes] = []
        self.closed = False
        self.peer = peer

    @property
    def data(self) -> bytes:
        return b"".join(self.writes)

    def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed

    async def wait_closed(self) -> None:
        pass

    def get_extra_info(self, name: str, default=None):
        if name == "peername":
            return self.peer
        return default


class BrokenStreamWriter(FakeStreamWriter):
    """Writer whose peer has gone away."""

    def write(self, data: bytes) -> None:
        raise ConnectionResetError("Connection reset by peer")


class StalledStreamWriter(FakeStreamWriter):
    """Writer whose peer stopped reading: ``drain`` never completes."""

    def __init__(self, peer=("127.0.0.1", 40001)):
        super().__init__(peer)
        self._released = asyncio.Event()

    async def drain(self) -> None:
        await self._released.wait()


class RecordingObserver(Observer):
    """Keeps every event as a ``(kind, payload)`` tuple."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def connected(self, session) -> None:
        self.events.append(("connected", session.identity))

    def disconnected(self, identity: int, reason: str) -> None:
        self.events.append(("disconnected", identity))

    def inbound(self, identity: int, text: str) -> None:
        self.events.append(("inbound", (identity, text)))

    def info(self, text: str) -> None:
        self.events.append(("info", text))

    def error(self, text: str) -> None:
        self.events.append(("error", text))

    def of(self, kind: str) -> list:
        return [payload for k, payload in self.events if k == kind]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* until true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached before timeout")
        await asyncio.sleep(0.01)


# ── Fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def registry(observer) -> SessionRegistry:
    return SessionRegistry(observer)


@pytest.fixture
def selector(registry) -> TargetSelector:
    return TargetSelector(registry)


@pytest.fixture
def dispatcher(registry, observer) -> Dispatcher:
    return Dispatcher(registry, observer)
