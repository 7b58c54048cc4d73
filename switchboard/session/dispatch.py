"""Target selection and directive delivery.

Directives are raw UTF-8 text with no framing. ``EXIT`` is the only one
the server itself acts on: after a successful write the session is
closed without waiting for the agent to hang up.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from switchboard.observer import Observer
from switchboard.session.registry import (
    SessionConnectionError,
    SessionRegistry,
    UnknownTarget,
)

logger = logging.getLogger(__name__)

EXIT_DIRECTIVE = "EXIT"


# ── Targeting ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Target:
    """Either every session (``identity is None``) or one identity."""

    identity: int | None = None

    @property
    def is_broadcast(self) -> bool:
        return self.identity is None

    def __str__(self) -> str:
        return "all" if self.identity is None else str(self.identity)


BROADCAST = Target()


class TargetSelector:
    """The operator's current addressing mode. Starts in broadcast."""

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry
        self._current = BROADCAST

    @property
    def current(self) -> Target:
        return self._current

    def select_all(self) -> Target:
        self._current = BROADCAST
        return self._current

    def select_specific(self, identity: int) -> Target:
        """Target *identity*; raises :class:`UnknownTarget` and keeps the
        previous selection if it is not registered."""
        if identity not in self.registry:
            raise UnknownTarget(identity)
        self._current = Target(identity)
        return self._current


# ── Delivery ──────────────────────────────────────────────────────


@dataclass
class DispatchReport:
    directive: str
    target: Target
    delivered: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    closed: list[int] = field(default_factory=list)


class Dispatcher:
    """Delivers directives to one or every registered session."""

    def __init__(self, registry: SessionRegistry, observer: Observer | None = None) -> None:
        self.registry = registry
        self.observer = observer or registry.observer or Observer()

    async def send(self, directive: str, target: Target) -> DispatchReport:
        """Deliver *directive* to *target*.

        Broadcast resolves a snapshot of identities and writes to each one
        independently. A specific target that is no longer registered
        raises :class:`UnknownTarget` without writing anything.
        """
        report = DispatchReport(directive, target)
        if target.identity is None:
            identities = self.registry.list()
        elif target.identity not in self.registry:
            raise UnknownTarget(target.identity)
        else:
            identities = [target.identity]

        payload = directive.encode("utf-8")
        await asyncio.gather(*(self._deliver(i, payload, report) for i in identities))
        report.delivered.sort()
        report.failed.sort()
        report.closed.sort()
        return report

    async def _deliver(self, identity: int, payload: bytes, report: DispatchReport) -> None:
        session = self.registry.get(identity)
        if session is None:
            self.observer.error(f"client {identity} no longer exists")
            report.failed.append(identity)
            return

        try:
            await session.write(payload)
        except SessionConnectionError as exc:
            logger.debug("Delivery to client %d failed: %s", identity, exc)
            self.observer.error(f"delivery to client {identity} failed: {exc.cause or 'session closed'}")
            report.failed.append(identity)
            if self.registry.remove(identity, "write error") is not None:
                report.closed.append(identity)
            return

        report.delivered.append(identity)
        if report.directive == EXIT_DIRECTIVE:
            if self.registry.remove(identity, "exit requested") is not None:
                report.closed.append(identity)
