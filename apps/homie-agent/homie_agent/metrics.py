"""Optional metric sources reported alongside the device stats."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

import psutil

logger = logging.getLogger(__name__)

PREFERRED_TEMPERATURE_SENSORS = ("cpu_thermal", "coretemp", "k10temp", "soc_thermal", "cpu-thermal")


class MetricProvider(Protocol):
    """Produces one metric value as the string published on the wire."""

    available: bool

    def read(self) -> Optional[str]:
        ...


class NullMetricProvider:
    """Stand-in used when no source is configured; never published."""

    available: bool = False

    def read(self) -> Optional[str]:
        return None


class CallableMetricProvider:
    """Wraps a zero-argument callable supplied by the embedding application."""

    available: bool = True

    def __init__(self, fn: Callable[[], str]) -> None:
        self._fn = fn

    def read(self) -> Optional[str]:
        return self._fn()


class CpuTemperatureProvider:
    """CPU temperature in degrees Celsius from ``psutil.sensors_temperatures``."""

    def __init__(self) -> None:
        self.available = self._current() is not None
        if not self.available:
            logger.info("No CPU temperature sensor found; $stats/cputemp disabled")

    def read(self) -> Optional[str]:
        value = self._current()
        if value is None:
            return None
        return f"{value:.1f}"

    @staticmethod
    def _current() -> Optional[float]:
        read_temps = getattr(psutil, "sensors_temperatures", None)
        if read_temps is None:
            return None
        try:
            temps = read_temps() or {}
        except (OSError, RuntimeError) as exc:
            logger.debug("Unable to read temperature sensors: %s", exc)
            return None
        for key in PREFERRED_TEMPERATURE_SENSORS:
            entries = temps.get(key)
            if entries:
                return float(entries[0].current)
        for entries in temps.values():
            if entries:
                return float(entries[0].current)
        return None


class CpuLoadProvider:
    """Whole-system CPU utilisation percent since the previous read."""

    available: bool = True

    def __init__(self) -> None:
        # First call only primes psutil's counters and always reports 0.0.
        psutil.cpu_percent(interval=None)

    def read(self) -> Optional[str]:
        return f"{psutil.cpu_percent(interval=None):.1f}"


def as_provider(source: MetricProvider | Callable[[], str] | None) -> MetricProvider:
    """Normalise an optional callable or provider into a provider."""

    if source is None:
        return NullMetricProvider()
    if hasattr(source, "read") and hasattr(source, "available"):
        return source  # type: ignore[return-value]
    return CallableMetricProvider(source)  # type: ignore[arg-type]


__all__ = [
    "CallableMetricProvider",
    "CpuLoadProvider",
    "CpuTemperatureProvider",
    "MetricProvider",
    "NullMetricProvider",
    "as_provider",
]
