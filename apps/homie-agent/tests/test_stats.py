from __future__ import annotations

import threading
import time
from typing import List

import pytest

from conftest import wait_for
from homie_agent.metrics import CallableMetricProvider, NullMetricProvider
from homie_agent.stats import StatsPublisher, StatsScheduler


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _Unavailable:
    available = False

    def read(self) -> str:
        raise AssertionError("unavailable providers must not be read")


def _recorder():
    published: List[tuple[str, str, bool]] = []

    def publish(attribute: str, payload: str, retained: bool) -> bool:
        published.append((attribute, payload, retained))
        return True

    return published, publish


def test_stats_publisher_reports_uptime_only_by_default() -> None:
    published, publish = _recorder()
    clock = _Clock(100.0)
    stats = StatsPublisher(publish, booted_at=40.0, clock=clock)

    stats.publish()

    assert published == [("$stats/uptime", "60", True)]


def test_stats_publisher_truncates_uptime_to_whole_seconds() -> None:
    _, publish = _recorder()
    clock = _Clock(12.9)
    stats = StatsPublisher(publish, booted_at=10.0, clock=clock)
    assert stats.uptime_seconds() == 2


def test_stats_publisher_forwards_metric_strings() -> None:
    published, publish = _recorder()
    stats = StatsPublisher(
        publish,
        booted_at=0.0,
        cpu_temperature=CallableMetricProvider(lambda: "55.2"),
        cpu_load=CallableMetricProvider(lambda: "3.1"),
        clock=_Clock(5.0),
    )

    stats.publish()

    assert published == [
        ("$stats/uptime", "5", True),
        ("$stats/cputemp", "55.2", True),
        ("$stats/cpuload", "3.1", True),
    ]


def test_stats_publisher_skips_unavailable_providers() -> None:
    published, publish = _recorder()
    stats = StatsPublisher(
        publish,
        booted_at=0.0,
        cpu_temperature=_Unavailable(),
        cpu_load=NullMetricProvider(),
        clock=_Clock(1.0),
    )

    stats.publish()

    assert [attribute for attribute, _, _ in published] == ["$stats/uptime"]


def test_scheduler_fires_immediately_on_arm() -> None:
    fired = threading.Event()
    scheduler = StatsScheduler(fired.set)
    try:
        scheduler.arm(30.0)
        assert fired.wait(timeout=1.0)
    finally:
        scheduler.stop()


def test_scheduler_repeats_at_interval() -> None:
    calls: List[float] = []
    scheduler = StatsScheduler(lambda: calls.append(time.monotonic()))
    try:
        scheduler.arm(0.05)
        assert wait_for(lambda: len(calls) >= 4, timeout=2.0)
    finally:
        scheduler.stop()
    assert calls[3] - calls[0] >= 0.1


def test_scheduler_disarm_stops_runs() -> None:
    calls: List[int] = []
    scheduler = StatsScheduler(lambda: calls.append(1))
    try:
        scheduler.arm(0.02)
        assert wait_for(lambda: len(calls) >= 2)
        scheduler.disarm()
        assert wait_for(lambda: not scheduler.armed)
        settled = len(calls)
        time.sleep(0.1)
        assert len(calls) == settled
    finally:
        scheduler.stop()


def test_rearm_replaces_previous_schedule() -> None:
    calls: List[int] = []
    scheduler = StatsScheduler(lambda: calls.append(1))
    try:
        scheduler.arm(10.0)
        assert wait_for(lambda: len(calls) == 1)
        scheduler.arm(10.0)
        assert wait_for(lambda: len(calls) == 2)
        time.sleep(0.1)
        # Two arms, two immediate runs; the long interval never elapsed.
        assert len(calls) == 2
    finally:
        scheduler.stop()


def test_scheduler_survives_failing_action() -> None:
    calls: List[int] = []

    def action() -> None:
        calls.append(1)
        raise RuntimeError("boom")

    scheduler = StatsScheduler(action)
    try:
        scheduler.arm(0.02)
        assert wait_for(lambda: len(calls) >= 3)
    finally:
        scheduler.stop()


def test_scheduler_stop_joins_thread() -> None:
    scheduler = StatsScheduler(lambda: None)
    scheduler.arm(1.0)
    scheduler.stop()
    assert scheduler.armed is False
    assert scheduler._thread is not None and not scheduler._thread.is_alive()


def test_scheduler_rejects_non_positive_interval() -> None:
    scheduler = StatsScheduler(lambda: None)
    with pytest.raises(ValueError):
        scheduler.arm(0)


def test_arm_after_stop_is_ignored() -> None:
    calls: List[int] = []
    scheduler = StatsScheduler(lambda: calls.append(1))
    scheduler.arm(0.02)
    assert wait_for(lambda: calls)
    scheduler.stop()
    stopped_thread = scheduler._thread

    scheduler.arm(0.02)
    time.sleep(0.1)

    assert scheduler.stopped is True
    assert scheduler._thread is stopped_thread
    assert not stopped_thread.is_alive()
    assert len(calls) == 1


def test_late_runs_collapse_instead_of_bursting() -> None:
    calls: List[float] = []

    def action() -> None:
        calls.append(time.monotonic())
        if len(calls) == 1:
            # Blocks past several slots, as a stats run waiting on a connect does.
            time.sleep(0.3)

    scheduler = StatsScheduler(action)
    try:
        scheduler.arm(0.05)
        assert wait_for(lambda: len(calls) >= 4, timeout=2.0)
    finally:
        scheduler.stop()
    assert calls[2] - calls[1] >= 0.04
    assert calls[3] - calls[2] >= 0.04
