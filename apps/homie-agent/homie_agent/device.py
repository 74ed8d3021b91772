"""Homie device lifecycle: connection state machine and attribute publication."""
from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from homie_agent.config import Configuration
from homie_agent.errors import ConnectFailure, LoopInterrupted, PublishFailure
from homie_agent.metrics import MetricProvider, as_provider
from homie_agent.nodes import Node, NodeFactory, NodeRegistry
from homie_agent.stats import StatsPublisher, StatsScheduler
from homie_agent.topics import (
    ATTR_FW_NAME,
    ATTR_FW_VERSION,
    ATTR_HOMIE,
    ATTR_IMPLEMENTATION,
    ATTR_NAME,
    ATTR_NODES,
    ATTR_STATE,
    ATTR_STATS_INTERVAL,
    HOMIE_CONVENTION,
    IMPLEMENTATION,
    build_topic,
)
from homie_agent.transport import Transport

logger = logging.getLogger(__name__)

TICK_SECONDS = 0.1


class State(enum.Enum):
    INIT = "init"
    READY = "ready"
    DISCONNECTED = "disconnected"
    # Part of the convention, but nothing drives the device into these yet.
    SLEEPING = "sleeping"
    LOST = "lost"
    ALERT = "alert"


class TickEvent(enum.Enum):
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"
    LINK_UP = "link_up"
    LINK_DOWN = "link_down"


TRANSITIONS: Dict[tuple[State, TickEvent], State] = {
    (State.INIT, TickEvent.CONNECTED): State.READY,
    (State.INIT, TickEvent.CONNECT_FAILED): State.DISCONNECTED,
    (State.READY, TickEvent.LINK_UP): State.READY,
    (State.READY, TickEvent.LINK_DOWN): State.DISCONNECTED,
    (State.DISCONNECTED, TickEvent.CONNECTED): State.READY,
    (State.DISCONNECTED, TickEvent.CONNECT_FAILED): State.DISCONNECTED,
}


class HomieDevice:
    """A Homie 3.0.0 device driven by a background state machine.

    ``setup()`` starts the loop thread; ``shutdown()`` stops it, stops the
    stats timer and disconnects the transport, in that order. ``step()``
    runs a single poll + transition and is what the loop calls every tick.

    One re-entrant lock serialises transport access, state changes and the
    whole connect -> ``on_connect()`` sequence. Stats publication takes the
    same lock, so the first stats of a connection can never overtake the
    attributes, the node list or the node hooks.
    """

    def __init__(
        self,
        configuration: Configuration,
        firmware_name: str,
        firmware_version: str,
        transport: Transport,
        *,
        cpu_temperature: MetricProvider | Callable[[], str] | None = None,
        cpu_load: MetricProvider | Callable[[], str] | None = None,
    ) -> None:
        self.configuration = configuration
        self.firmware_name = firmware_name
        self.firmware_version = firmware_version
        self._transport = transport
        self._booted_at = time.monotonic()
        self._state = State.INIT
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.nodes = NodeRegistry(self)
        self.stats = StatsPublisher(
            self.publish,
            booted_at=self._booted_at,
            cpu_temperature=as_provider(cpu_temperature),
            cpu_load=as_provider(cpu_load),
        )
        self._scheduler = StatsScheduler(self._publish_stats)
        self._pollers: Dict[State, Callable[[], TickEvent]] = {
            State.INIT: self._poll_connect,
            State.READY: self._poll_link,
            State.DISCONNECTED: self._poll_connect,
        }
        self._on_enter: Dict[State, Callable[[], None]] = {
            State.INIT: lambda: logger.info("--> init"),
            State.READY: self._enter_ready,
            State.DISCONNECTED: lambda: logger.info("--> disconnected"),
        }
        self._on_exit: Dict[State, Callable[[], None]] = {
            State.READY: self._disarm_stats,
        }

    @property
    def state(self) -> State:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def uptime_seconds(self) -> int:
        return self.stats.uptime_seconds()

    def create_node(self, name: str, type: str, factory: Optional[NodeFactory] = None) -> Node:
        return self.nodes.create_node(name, type, factory)

    def set_cpu_temperature_function(self, fn: MetricProvider | Callable[[], str] | None) -> None:
        self.stats.cpu_temperature = as_provider(fn)

    def set_cpu_load_function(self, fn: MetricProvider | Callable[[], str] | None) -> None:
        self.stats.cpu_load = as_provider(fn)

    def setup(self) -> None:
        if self.running:
            return
        if self._scheduler.stopped:
            self._scheduler = StatsScheduler(self._publish_stats)
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="homie-state-machine", daemon=True)
        self._thread.start()

    def shutdown(self, timeout: float = 5.0) -> None:
        logger.info("Shutdown request received")
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                # A connect attempt is bounded by the transport's own timeout.
                logger.warning("State machine still finishing a tick; waiting for it")
                thread.join()
            self._thread = None
        self._scheduler.stop()
        with self._lock:
            self._disconnect()
        logger.info("Terminating")

    def step(self) -> State:
        """Poll the current state once and apply the resulting transition."""

        with self._lock:
            current = self._state
            poller = self._pollers.get(current)
            if poller is None:
                return current
            event = poller()
            target = TRANSITIONS[(current, event)]
            if target is not current:
                self._transition(current, target)
            return self._state

    def publish(self, attribute: str, payload: str, retained: bool = True) -> bool:
        """Publish ``payload`` under ``{base_topic}/{device_id}/{attribute}``.

        Only READY devices publish; otherwise the call is dropped with a
        warning. Transport failures are logged, never raised.
        """

        with self._lock:
            if self._state is not State.READY:
                logger.warning("Couldn't publish %s - not connected", attribute)
                return False
            topic = build_topic(self.configuration.base_topic, self.configuration.device_id, attribute)
            try:
                self._transport.publish(topic, payload.encode("utf-8"), retained)
            except PublishFailure as exc:
                logger.error("Couldn't publish message: %s", exc)
                return False
            return True

    def snapshot(self) -> Dict[str, object]:
        # Lock-free: a tick holds the lock for a whole connect attempt.
        state = self._state
        connected = self._transport.is_connected()
        return {
            "device_id": self.configuration.device_id,
            "base_topic": self.configuration.base_topic,
            "state": state.value,
            "connected": connected,
            "uptime_seconds": self.uptime_seconds(),
            "firmware_name": self.firmware_name,
            "firmware_version": self.firmware_version,
            "stats_interval_ms": self.configuration.stats_interval_ms,
            "nodes": self.nodes.names(),
        }

    def _run(self) -> None:
        self._on_enter[State.INIT]()
        try:
            while not self._stop.is_set():
                if self.state is State.DISCONNECTED:
                    self._sleep(self.configuration.disconnect_retry_seconds)
                try:
                    self.step()
                except Exception:
                    logger.exception("Unhandled state machine error")
                self._sleep(TICK_SECONDS)
        except LoopInterrupted:
            logger.info("State machine interrupted; leaving loop")

    def _sleep(self, seconds: float) -> None:
        if self._stop.wait(timeout=seconds):
            raise LoopInterrupted()

    def _transition(self, current: State, target: State) -> None:
        on_exit = self._on_exit.get(current)
        if on_exit is not None:
            on_exit()
        self._state = target
        on_enter = self._on_enter.get(target)
        if on_enter is not None:
            on_enter()

    def _poll_connect(self) -> TickEvent:
        return TickEvent.CONNECTED if self._connect() else TickEvent.CONNECT_FAILED

    def _poll_link(self) -> TickEvent:
        return TickEvent.LINK_UP if self._transport.is_connected() else TickEvent.LINK_DOWN

    def _connect(self) -> bool:
        if self._stop.is_set():
            return False
        if self._transport.is_connected():
            self._disconnect()
        try:
            self._transport.connect(self.configuration.broker_url, self.configuration.device_id)
        except ConnectFailure as exc:
            logger.error("Couldn't connect: %s", exc)
            return False
        if self._stop.is_set():
            logger.info("Shutdown requested during connect; dropping the session")
            self._disconnect()
            return False
        self._scheduler.arm(self.configuration.stats_interval_seconds)
        return True

    def _disconnect(self) -> None:
        try:
            self._transport.disconnect()
        except Exception as exc:
            logger.info("Failed to disconnect: %s", exc)

    def _enter_ready(self) -> None:
        logger.info("--> ready")
        self.on_connect()

    def on_connect(self) -> None:
        """Announce the device, its node list and every node, in that order."""

        self._send_attributes()
        self._publish_nodes()

    def _send_attributes(self) -> None:
        self.publish(ATTR_HOMIE, HOMIE_CONVENTION)
        self.publish(ATTR_NAME, self.configuration.device_id)
        self.publish(ATTR_STATE, self._state.value)
        self.publish(ATTR_IMPLEMENTATION, IMPLEMENTATION)
        self.publish(ATTR_STATS_INTERVAL, str(self.configuration.stats_interval_ms))
        self.publish(ATTR_FW_NAME, self.firmware_name)
        self.publish(ATTR_FW_VERSION, self.firmware_version)

    def _publish_nodes(self) -> None:
        nodes: List[Node] = self.nodes.snapshot()
        self.publish(ATTR_NODES, ",".join(node.name for node in nodes))
        for node in nodes:
            try:
                node.on_connect()
            except Exception:
                logger.exception("on_connect hook failed for node %s", node.name)

    def _disarm_stats(self) -> None:
        self._scheduler.disarm()

    def _publish_stats(self) -> None:
        with self._lock:
            self.stats.publish()


__all__ = ["HomieDevice", "State", "TICK_SECONDS", "TRANSITIONS", "TickEvent"]
