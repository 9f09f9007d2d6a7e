"""Tests for syncspine.scheduling.timer."""

from __future__ import annotations

import threading
import time

from syncspine.scheduling.timer import PeriodicTimer


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestPeriodicTimer:
    def test_ticks_until_stopped(self):
        ticks = []
        timer = PeriodicTimer("test")
        timer.start(lambda: ticks.append(1), interval_seconds=0.02)

        assert _wait_for(lambda: len(ticks) >= 3)
        assert timer.is_running
        timer.stop()

        assert not timer.is_running
        count = len(ticks)
        time.sleep(0.1)
        assert len(ticks) == count
        assert timer.tick_count == count
        assert timer.last_tick is not None

    def test_run_immediately(self):
        ticked = threading.Event()
        timer = PeriodicTimer("eager", run_immediately=True)
        timer.start(ticked.set, interval_seconds=60)
        try:
            assert ticked.wait(1.0)
        finally:
            timer.stop()

    def test_waits_first_interval_when_not_immediate(self):
        ticked = threading.Event()
        timer = PeriodicTimer("lazy", run_immediately=False)
        timer.start(ticked.set, interval_seconds=60)
        try:
            assert not ticked.wait(0.1)
            assert timer.tick_count == 0
        finally:
            timer.stop()

    def test_failing_tick_does_not_stop_loop(self):
        calls = []

        def tick():
            calls.append(1)
            raise RuntimeError("tick failed")

        timer = PeriodicTimer("flaky")
        timer.start(tick, interval_seconds=0.01)
        try:
            assert _wait_for(lambda: len(calls) >= 3)
        finally:
            timer.stop()

    def test_start_twice_is_ignored(self):
        ticks = []
        timer = PeriodicTimer("once", run_immediately=False)
        timer.start(lambda: ticks.append("a"), interval_seconds=60)
        timer.start(lambda: ticks.append("b"), interval_seconds=0.01)
        try:
            time.sleep(0.05)
            assert ticks == []
        finally:
            timer.stop()

    def test_health(self):
        timer = PeriodicTimer("health")
        assert timer.health().healthy is False

        timer.start(lambda: None, interval_seconds=60)
        try:
            assert _wait_for(lambda: timer.tick_count == 1)
            health = timer.health().to_dict()
            assert health["healthy"] is True
            assert health["interval_seconds"] == 60
            assert health["tick_count"] == 1
        finally:
            timer.stop()

    def test_stop_before_start_is_noop(self):
        PeriodicTimer("idle").stop()
