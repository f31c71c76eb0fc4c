"""Threading-based scheduler backend.

One daemon thread calls the tick callback, then sleeps on an event for the
delay the callback returned (never longer than ``max_idle_seconds``).
``wake()`` sets the event so a newly armed trigger is picked up at once;
``stop()`` sets both the stop and wake events and joins the thread.

Dispatch latency relative to a due instant is therefore bounded by
``max_idle_seconds`` plus the time spent inside the previous tick.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any

from cronspine.core.logging import get_logger
from cronspine.core.timestamps import utc_now

from .protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class ThreadSchedulerBackend:
    """Daemon-thread timing backend (the default).

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>> backend.start(service.tick, max_idle_seconds=1.0)
        >>> backend.wake()      # after arming an earlier trigger
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, join_timeout: float = 5.0) -> None:
        self.join_timeout = join_timeout
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._max_idle: float = 1.0
        self._started = False
        self._lock = threading.Lock()

    def start(self, tick_callback: TickCallback, max_idle_seconds: float = 1.0) -> None:
        """Start the tick loop in a daemon thread.

        Args:
            tick_callback: Called on every tick; returns seconds until the
                next tick is needed (None means "no idea", use the cap)
            max_idle_seconds: Longest the loop ever sleeps
        """
        if self._started:
            logger.warning("backend.already_started", backend=self.name)
            return

        self._max_idle = max_idle_seconds
        self._stop_event.clear()
        self._wake_event.clear()

        def _loop() -> None:
            logger.info("backend.started", backend=self.name, max_idle_seconds=max_idle_seconds)
            while not self._stop_event.is_set():
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = utc_now()

                try:
                    delay = tick_callback()
                except Exception as e:
                    logger.exception("backend.tick_failed", error=str(e))
                    delay = None

                self._wake_event.wait(self._clamp(delay))
                self._wake_event.clear()

            logger.info("backend.stopped", backend=self.name)

        self._thread = threading.Thread(target=_loop, daemon=True, name="cronspine-scheduler")
        self._thread.start()
        self._started = True

    def _clamp(self, delay: float | None) -> float:
        if delay is None:
            return self._max_idle
        return min(max(delay, 0.0), self._max_idle)

    def wake(self) -> None:
        self._wake_event.set()

    def stop(self) -> None:
        """Stop the loop; waits up to ``join_timeout`` for the current tick."""
        if not self._started:
            return

        self._stop_event.set()
        self._wake_event.set()
        if self._thread:
            self._thread.join(timeout=self.join_timeout)
            if self._thread.is_alive():
                logger.warning("backend.stop_timeout", backend=self.name)

        self._started = False

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        """Return structured health status."""
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"max_idle_seconds": self._max_idle},
        )

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
