"""Topic identifiers and topic paths for the Homie convention."""
from __future__ import annotations

import re

HOMIE_CONVENTION = "3.0.0"
IMPLEMENTATION = "python"

TOPIC_ID_PATTERN = re.compile(r"[a-z0-9](?:[a-z0-9-]*[a-z0-9])?")

# Device attributes, relative to {base_topic}/{device_id}/
ATTR_HOMIE = "$homie"
ATTR_NAME = "$name"
ATTR_STATE = "$state"
ATTR_IMPLEMENTATION = "$implementation"
ATTR_STATS_INTERVAL = "$stats/interval"
ATTR_FW_NAME = "$fw/name"
ATTR_FW_VERSION = "$fw/version"
ATTR_NODES = "$nodes"
ATTR_STATS_UPTIME = "$stats/uptime"
ATTR_STATS_CPUTEMP = "$stats/cputemp"
ATTR_STATS_CPULOAD = "$stats/cpuload"


def is_valid_topic_id(value: object) -> bool:
    """True if ``value`` is a lowercase alphanumeric/hyphen topic segment."""

    if not isinstance(value, str):
        return False
    return TOPIC_ID_PATTERN.fullmatch(value) is not None


def build_topic(base_topic: str, device_id: str, attribute: str) -> str:
    return f"{base_topic}/{device_id}/{attribute}"


__all__ = [
    "ATTR_FW_NAME",
    "ATTR_FW_VERSION",
    "ATTR_HOMIE",
    "ATTR_IMPLEMENTATION",
    "ATTR_NAME",
    "ATTR_NODES",
    "ATTR_STATE",
    "ATTR_STATS_CPULOAD",
    "ATTR_STATS_CPUTEMP",
    "ATTR_STATS_INTERVAL",
    "ATTR_STATS_UPTIME",
    "HOMIE_CONVENTION",
    "IMPLEMENTATION",
    "TOPIC_ID_PATTERN",
    "build_topic",
    "is_valid_topic_id",
]
