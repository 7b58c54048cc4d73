"""Tests for target selection and directive delivery."""

from __future__ import annotations

import asyncio

import pytest

from conftest import BrokenStreamWriter, FakeStreamReader, FakeStreamWriter
from switchboard.session.dispatch import BROADCAST, Target
from switchboard.session.registry import UnknownTarget


def _connect(registry, writer=None) -> int:
    return registry.register(FakeStreamReader(), writer or FakeStreamWriter())


# ── Target selector ───────────────────────────────────────────────


class TestTargetSelector:
    def test_initial_state_is_broadcast(self, selector):
        assert selector.current == BROADCAST
        assert selector.current.is_broadcast
        assert str(selector.current) == "all"

    def test_select_registered(self, registry, selector):
        _connect(registry)
        two = _connect(registry)
        assert selector.select_specific(two) == Target(two)
        assert selector.current.identity == two
        assert str(selector.current) == "2"

    def test_select_unknown_keeps_previous(self, registry, selector):
        one = _connect(registry)
        selector.select_specific(one)
        with pytest.raises(UnknownTarget):
            selector.select_specific(7)
        assert selector.current == Target(one)

    def test_select_unknown_from_broadcast(self, selector):
        with pytest.raises(UnknownTarget):
            selector.select_specific(7)
        assert selector.current == BROADCAST

    def test_select_all(self, registry, selector):
        selector.select_specific(_connect(registry))
        assert selector.select_all() == BROADCAST

    def test_stale_target_not_reverted(self, registry, selector):
        one = _connect(registry)
        selector.select_specific(one)
        registry.remove(one)
        assert selector.current == Target(one)


# ── Dispatcher ────────────────────────────────────────────────────


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_delivers_to_every_session(self, registry, dispatcher):
        writers = [FakeStreamWriter() for _ in range(3)]
        for w in writers:
            _connect(registry, w)

        report = await dispatcher.send("INFO", BROADCAST)

        assert report.delivered == [1, 2, 3]
        assert report.failed == []
        assert report.closed == []
        assert all(w.data == b"INFO" for w in writers)

    @pytest.mark.asyncio
    async def test_broken_stream_isolated(self, registry, dispatcher, observer):
        good_a, good_b = FakeStreamWriter(), FakeStreamWriter()
        _connect(registry, good_a)
        broken = _connect(registry, BrokenStreamWriter())
        _connect(registry, good_b)

        report = await dispatcher.send("ECHO|hi", BROADCAST)

        assert good_a.data == b"ECHO|hi"
        assert good_b.data == b"ECHO|hi"
        assert report.delivered == [1, 3]
        assert report.failed == [broken]
        assert report.closed == [broken]
        assert registry.list() == [1, 3]
        assert observer.of("disconnected") == [broken]
        assert any("client 2" in e for e in observer.of("error"))

    @pytest.mark.asyncio
    async def test_no_sessions(self, dispatcher):
        report = await dispatcher.send("INFO", BROADCAST)
        assert report.delivered == []
        assert report.failed == []

    @pytest.mark.asyncio
    async def test_utf8_payload(self, registry, dispatcher):
        writer = FakeStreamWriter()
        _connect(registry, writer)
        await dispatcher.send("ECHO|héllo", BROADCAST)
        assert writer.data == "ECHO|héllo".encode("utf-8")


class TestSpecific:
    @pytest.mark.asyncio
    async def test_only_target_receives(self, registry, dispatcher):
        w1, w2 = FakeStreamWriter(), FakeStreamWriter()
        _connect(registry, w1)
        two = _connect(registry, w2)

        report = await dispatcher.send("INFO", Target(two))

        assert report.delivered == [two]
        assert w1.writes == []
        assert w2.data == b"INFO"

    @pytest.mark.asyncio
    async def test_unknown_target_no_delivery(self, registry, dispatcher):
        writer = FakeStreamWriter()
        _connect(registry, writer)
        with pytest.raises(UnknownTarget) as info:
            await dispatcher.send("INFO", Target(7))
        assert info.value.identity == 7
        assert writer.writes == []

    @pytest.mark.asyncio
    async def test_write_failure_removes_session(self, registry, dispatcher):
        broken = _connect(registry, BrokenStreamWriter())
        report = await dispatcher.send("INFO", Target(broken))
        assert report.failed == [broken]
        assert broken not in registry


class TestExit:
    @pytest.mark.asyncio
    async def test_exit_closes_target(self, registry, dispatcher, observer):
        _connect(registry)
        writer = FakeStreamWriter()
        two = _connect(registry, writer)

        report = await dispatcher.send("EXIT", Target(two))

        assert writer.data == b"EXIT"
        assert writer.closed
        assert two not in registry
        assert registry.list() == [1]
        assert report.closed == [two]
        assert observer.of("disconnected") == [two]

    @pytest.mark.asyncio
    async def test_exit_broadcast_closes_all(self, registry, dispatcher):
        for _ in range(3):
            _connect(registry)
        await dispatcher.send("EXIT", BROADCAST)
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_exit_is_case_sensitive(self, registry, dispatcher):
        one = _connect(registry)
        await dispatcher.send("exit", Target(one))
        assert one in registry

    @pytest.mark.asyncio
    async def test_concurrent_broadcast_and_exit_serialised(self, registry, dispatcher):
        writer = FakeStreamWriter()
        one = _connect(registry, writer)

        await asyncio.gather(
            dispatcher.send("INFO", BROADCAST),
            dispatcher.send("EXIT", Target(one)),
        )

        assert writer.writes == [b"INFO", b"EXIT"]
        assert one not in registry
