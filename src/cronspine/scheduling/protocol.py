"""Scheduler timing backend and clock protocols.

The scheduler splits timing from logic ("beat-as-poller"):

- Backend: decides WHEN to tick (a daemon thread sleeping on an event)
- Service: decides WHAT happens on a tick (select due triggers, acquire,
  recompute, dispatch)

Unlike a fixed-interval poller, the tick callback returns how long the
backend may sleep before the next tick. The service answers with the delay
to its earliest armed trigger, capped at ``max_idle_seconds``, and calls
``backend.wake()`` when a trigger is armed so a new, earlier instant is seen
without waiting out the current sleep.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from cronspine.core.timestamps import utc_now

TickCallback = Callable[[], "float | None"]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Pluggable timing backend.

    A backend only calls the tick callback; schedule evaluation lives in
    ``SchedulerService``.
    """

    name: str

    def start(self, tick_callback: TickCallback, max_idle_seconds: float = 1.0) -> None:
        """Start calling ``tick_callback`` until stopped."""
        ...

    def stop(self) -> None:
        """Stop ticking; waits for the current tick to complete."""
        ...

    def wake(self) -> None:
        """Cut the current sleep short so the next tick runs now."""
        ...

    def health(self) -> dict[str, Any]:
        """Return at least ``healthy``, ``backend``, ``tick_count``, ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }


@runtime_checkable
class Clock(Protocol):
    """Source of "now" for the store and the scheduler (tests inject a fake)."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, UTC."""

    def now(self) -> datetime:
        return utc_now()
