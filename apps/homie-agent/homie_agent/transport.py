"""MQTT transport used by the device state machine."""
from __future__ import annotations

import logging
import ssl
import threading
from typing import Optional, Protocol
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from homie_agent.errors import ConnectFailure, PublishFailure

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {
    "tcp": 1883,
    "mqtt": 1883,
    "ssl": 8883,
    "mqtts": 8883,
}
TLS_SCHEMES = {"ssl", "mqtts"}


class Transport(Protocol):
    """Connect/publish primitives the device delegates all I/O to."""

    def connect(self, broker_url: str, client_id: str) -> None:
        ...

    def disconnect(self) -> None:
        ...

    def is_connected(self) -> bool:
        ...

    def publish(self, topic: str, payload: bytes, retained: bool) -> None:
        ...


def parse_broker_url(broker_url: str) -> tuple[str, int, bool]:
    """Split a broker URL into ``(host, port, use_tls)``.

    A bare ``host`` or ``host:port`` is treated as plain ``tcp://``.
    """

    raw = broker_url.strip()
    if "://" not in raw:
        raw = f"tcp://{raw}"
    parsed = urlparse(raw)
    scheme = (parsed.scheme or "tcp").lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError(f"Unsupported broker URL scheme {scheme!r}")
    if not parsed.hostname:
        raise ValueError(f"Broker URL {broker_url!r} has no host")
    return parsed.hostname, parsed.port or DEFAULT_PORTS[scheme], scheme in TLS_SCHEMES


class PahoTransport:
    """paho-mqtt backed transport.

    Every ``connect`` builds a fresh client, waits for the CONNACK and runs
    paho's network loop on its own thread. ``is_connected`` follows the
    connect/disconnect callbacks, so a dropped broker session is reported on
    the next poll.
    """

    def __init__(
        self,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        qos: int = 1,
        connect_timeout_seconds: float = 5.0,
    ) -> None:
        self._username = username
        self._password = password
        self._keepalive = int(keepalive)
        self._qos = int(qos)
        self._connect_timeout = float(connect_timeout_seconds)
        self._client: mqtt.Client | None = None
        self._connected = threading.Event()
        self._connack = threading.Event()
        self._last_reason: Optional[str] = None

    def connect(self, broker_url: str, client_id: str) -> None:
        try:
            host, port, use_tls = parse_broker_url(broker_url)
        except ValueError as exc:
            raise ConnectFailure(broker_url, str(exc)) from exc

        # A client left over from a dropped session still runs paho's
        # reconnect loop; it must go before a new one takes its place.
        self.disconnect()

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        if self._username:
            client.username_pw_set(self._username, self._password)
        if use_tls:
            client.tls_set(cert_reqs=ssl.CERT_REQUIRED)

        self._connack.clear()
        self._last_reason = None
        self._client = client
        logger.info("Connecting to MQTT broker %s:%s as %s", host, port, client_id)
        try:
            client.connect(host, port, keepalive=self._keepalive)
        except (OSError, ValueError) as exc:
            self._client = None
            raise ConnectFailure(broker_url, str(exc)) from exc

        client.loop_start()
        if not self._connack.wait(self._connect_timeout):
            self.disconnect()
            raise ConnectFailure(broker_url, f"no CONNACK within {self._connect_timeout:.1f}s")
        if not self._connected.is_set():
            reason = self._last_reason or "connection refused"
            self.disconnect()
            raise ConnectFailure(broker_url, reason)

    def disconnect(self) -> None:
        client = self._client
        self._client = None
        self._connected.clear()
        if client is None:
            return
        self._teardown(client)

    def is_connected(self) -> bool:
        return self._client is not None and self._connected.is_set()

    def publish(self, topic: str, payload: bytes, retained: bool) -> None:
        client = self._client
        if client is None or not self._connected.is_set():
            raise PublishFailure(topic, "not connected")
        try:
            info = client.publish(topic, payload, qos=self._qos, retain=retained)
        except ValueError as exc:
            # Wildcards in the topic or an oversized payload.
            raise PublishFailure(topic, str(exc)) from exc
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishFailure(topic, mqtt.error_string(info.rc))

    def _teardown(self, client: mqtt.Client) -> None:
        try:
            client.disconnect()
        except Exception as exc:
            logger.info("Failed to disconnect: %s", exc)
        try:
            client.loop_stop()
        except Exception as exc:
            logger.debug("Failed to stop MQTT network loop: %s", exc)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if client is not self._client:
            return
        if reason_code.is_failure:
            self._last_reason = str(reason_code)
            self._connected.clear()
            logger.warning("MQTT broker refused connection: %s", reason_code)
        else:
            self._connected.set()
        self._connack.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if client is not self._client:
            return
        was_connected = self._connected.is_set()
        self._connected.clear()
        if was_connected:
            logger.warning("MQTT connection lost (%s)", reason_code)


__all__ = ["PahoTransport", "Transport", "parse_broker_url"]
