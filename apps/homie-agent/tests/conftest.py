from __future__ import annotations

import os
import sys
import threading
import time
from pathlib import Path
from typing import Callable, List

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from homie_agent.config import Configuration, get_settings  # noqa: E402
from homie_agent.device import HomieDevice  # noqa: E402
from homie_agent.errors import ConnectFailure, PublishFailure  # noqa: E402


class RecordingTransport:
    """In-memory transport that records every call for assertions."""

    def __init__(self, *, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.fail_publish = False
        self.connected = False
        self.connect_calls: List[tuple[str, str]] = []
        self.connect_times: List[float] = []
        self.disconnect_calls = 0
        self.publish_calls = 0
        self._messages: List[tuple[str, str, bool]] = []
        self._lock = threading.Lock()

    def connect(self, broker_url: str, client_id: str) -> None:
        self.connect_calls.append((broker_url, client_id))
        self.connect_times.append(time.monotonic())
        if self.fail_connect:
            raise ConnectFailure(broker_url, "connection refused")
        self.connected = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    def publish(self, topic: str, payload: bytes, retained: bool) -> None:
        with self._lock:
            self.publish_calls += 1
        if self.fail_publish:
            raise PublishFailure(topic, "broker went away")
        with self._lock:
            self._messages.append((topic, payload.decode("utf-8"), retained))

    @property
    def messages(self) -> List[tuple[str, str, bool]]:
        with self._lock:
            return list(self._messages)

    def topics(self) -> List[str]:
        return [topic for topic, _, _ in self.messages]

    def payload(self, topic: str) -> str | None:
        for candidate, payload, _ in reversed(self.messages):
            if candidate == topic:
                return payload
        return None

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture(autouse=True)
def reset_settings_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("HOMIE_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def configuration() -> Configuration:
    return Configuration(device_id="dev1", broker_url="tcp://broker.local:1883")


@pytest.fixture
def make_device(configuration):
    devices: List[HomieDevice] = []

    def _make(transport, **kwargs) -> HomieDevice:
        device = HomieDevice(configuration, "test-fw", "1.2.3", transport, **kwargs)
        devices.append(device)
        return device

    yield _make
    for device in devices:
        device.shutdown(timeout=1.0)
