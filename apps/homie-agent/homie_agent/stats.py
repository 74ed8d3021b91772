"""Periodic `$stats/*` publication for a connected device."""
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Optional

from homie_agent.metrics import MetricProvider, NullMetricProvider
from homie_agent.topics import ATTR_STATS_CPULOAD, ATTR_STATS_CPUTEMP, ATTR_STATS_UPTIME

logger = logging.getLogger(__name__)

PublishFn = Callable[[str, str, bool], bool]

_ARM = "arm"
_DISARM = "disarm"
_STOP = "stop"


class StatsPublisher:
    """Publishes one round of device statistics."""

    def __init__(
        self,
        publish: PublishFn,
        *,
        booted_at: float,
        cpu_temperature: MetricProvider | None = None,
        cpu_load: MetricProvider | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._publish = publish
        self._booted_at = booted_at
        self._clock = clock
        self.cpu_temperature = cpu_temperature or NullMetricProvider()
        self.cpu_load = cpu_load or NullMetricProvider()

    def uptime_seconds(self) -> int:
        return max(int(self._clock() - self._booted_at), 0)

    def publish(self) -> None:
        self._publish(ATTR_STATS_UPTIME, str(self.uptime_seconds()), True)
        self._publish_metric(ATTR_STATS_CPUTEMP, self.cpu_temperature)
        self._publish_metric(ATTR_STATS_CPULOAD, self.cpu_load)

    def _publish_metric(self, attribute: str, provider: MetricProvider) -> None:
        if not provider.available:
            return
        value = provider.read()
        if value is not None:
            self._publish(attribute, value, True)


class StatsScheduler:
    """Runs ``action`` at a fixed rate on a thread it alone owns.

    Other threads steer it through a command queue: :meth:`arm` (re)starts
    the schedule with the first run immediately, :meth:`disarm` pauses it and
    :meth:`stop` ends the thread. Arming while armed replaces the previous
    schedule, so at most one is ever live. A stopped scheduler stays stopped;
    later :meth:`arm` calls are ignored.

    Runs that fall behind (an action that blocked past its slot) collapse
    into one immediate run instead of firing back to back to catch up.
    """

    def __init__(self, action: Callable[[], None], *, name: str = "homie-stats") -> None:
        self._action = action
        self._name = name
        self._commands: "queue.Queue[tuple[str, Optional[float]]]" = queue.Queue()
        self._thread: threading.Thread | None = None
        self._start_lock = threading.Lock()
        self._armed = threading.Event()
        self._stopped = threading.Event()

    @property
    def armed(self) -> bool:
        return self._armed.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> None:
        with self._start_lock:
            if self._stopped.is_set():
                return
            if self._thread and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def arm(self, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self._stopped.is_set():
            logger.debug("Ignoring arm request on a stopped stats scheduler")
            return
        self.start()
        self._commands.put((_ARM, float(interval_seconds)))

    def disarm(self) -> None:
        self._commands.put((_DISARM, None))

    def stop(self, timeout: float = 2.0) -> None:
        with self._start_lock:
            self._stopped.set()
            thread = self._thread
        if thread is None or not thread.is_alive():
            return
        self._commands.put((_STOP, None))
        thread.join(timeout=timeout)

    def _run(self) -> None:
        interval: Optional[float] = None
        next_run: Optional[float] = None
        while True:
            timeout = None if next_run is None else max(next_run - time.monotonic(), 0.0)
            try:
                command, value = self._commands.get(timeout=timeout)
            except queue.Empty:
                self._fire()
                if interval is not None and next_run is not None:
                    next_run += interval
                    now = time.monotonic()
                    if next_run < now:
                        next_run = now
                continue

            if command == _ARM:
                interval = value
                next_run = time.monotonic()
                self._armed.set()
            elif command == _DISARM:
                interval = None
                next_run = None
                self._armed.clear()
            elif command == _STOP:
                self._armed.clear()
                return

    def _fire(self) -> None:
        try:
            self._action()
        except Exception:
            logger.exception("Stats publication failed")


__all__ = ["PublishFn", "StatsPublisher", "StatsScheduler"]
