"""Periodic timer backing the scheduler and the job consumer.

┌──────────────────────────────────────────────────────────────────────────────┐
│  PeriodicTimer                                                               │
│                                                                              │
│   start(tick, interval)                                                      │
│      │                                                                       │
│      ▼                                                                       │
│   ┌──────────────────────── daemon thread ──────────────────────────┐        │
│   │  if run_immediately: tick()                                     │        │
│   │  while not stop_event.wait(interval):                           │        │
│   │      tick_count += 1; last_tick = now()                         │        │
│   │      tick()            ◄── exceptions logged, loop continues    │        │
│   └─────────────────────────────────────────────────────────────────┘        │
│                                                                              │
│   stop(timeout)  ──►  stop_event.set(); thread.join(timeout)                 │
└──────────────────────────────────────────────────────────────────────────────┘

A tick never overlaps the previous one: the next wait starts after the
callback returns.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

TickCallback = Callable[[], None]


@dataclass
class TimerHealth:
    healthy: bool
    name: str
    tick_count: int = 0
    last_tick: datetime | None = None
    interval_seconds: float = 0.0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "name": self.name,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "interval_seconds": self.interval_seconds,
            **self.extra,
        }


class PeriodicTimer:
    """Calls a tick callback every ``interval_seconds`` on a daemon thread.

    Example:
        >>> timer = PeriodicTimer("consumer")
        >>> timer.start(lambda: print("tick"), interval_seconds=3.0)
        >>> # ... later ...
        >>> timer.stop()
    """

    def __init__(self, name: str = "timer", *, run_immediately: bool = True) -> None:
        self.name = name
        self.run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 0.0
        self._started = False
        self._lock = threading.Lock()

    def start(self, tick_callback: TickCallback, interval_seconds: float) -> None:
        if self._started:
            logger.warning("Timer %s already started", self.name)
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("Timer %s started (interval=%ss)", self.name, interval_seconds)
            if self.run_immediately:
                self._tick(tick_callback)
            while not self._stop_event.wait(interval_seconds):
                self._tick(tick_callback)
            logger.info("Timer %s stopped", self.name)

        self._thread = threading.Thread(target=_loop, daemon=True, name=f"syncspine-{self.name}")
        self._started = True
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, waiting up to ``timeout`` for a running tick."""
        if not self._started:
            return

        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Timer %s did not stop cleanly", self.name)

        self._started = False

    def _tick(self, tick_callback: TickCallback) -> None:
        with self._lock:
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
        try:
            tick_callback()
        except Exception as e:
            logger.exception("Timer %s tick failed: %s", self.name, e)

    def health(self) -> TimerHealth:
        return TimerHealth(
            healthy=self.is_running,
            name=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            interval_seconds=self._interval,
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
