"""Device-side client for the Homie 3.0.0 MQTT convention."""
from __future__ import annotations

from .config import Configuration, NodeConfig, Settings, get_settings
from .device import HomieDevice, State, TickEvent
from .errors import ConnectFailure, HomieError, InvalidIdentifier, LoopInterrupted, PublishFailure
from .nodes import Node, NodeRegistry
from .topics import build_topic, is_valid_topic_id
from .transport import PahoTransport, Transport

__version__ = "0.1.0"

__all__ = [
    "Configuration",
    "ConnectFailure",
    "HomieDevice",
    "HomieError",
    "InvalidIdentifier",
    "LoopInterrupted",
    "Node",
    "NodeConfig",
    "NodeRegistry",
    "PahoTransport",
    "PublishFailure",
    "Settings",
    "State",
    "TickEvent",
    "Transport",
    "build_topic",
    "get_settings",
    "is_valid_topic_id",
]
