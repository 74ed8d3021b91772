"""Runtime configuration for the Homie device agent."""
from __future__ import annotations

import uuid
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from homie_agent.errors import InvalidIdentifier
from homie_agent.topics import is_valid_topic_id

DEFAULT_STATS_INTERVAL_MS = 10_000
DEFAULT_DISCONNECT_RETRY_MS = 2_000


def _format_mac(value: int) -> str:
    mac = f"{value:012x}"
    return ":".join(mac[i : i + 2] for i in range(0, 12, 2))


def _default_device_id() -> str:
    mac_suffix = _format_mac(uuid.getnode()).replace(":", "")[-6:]
    return f"homie-{mac_suffix}"


def _require_topic_id(field: str, value: object) -> str:
    if not is_valid_topic_id(value):
        raise InvalidIdentifier(field, value)
    return value  # type: ignore[return-value]


class Configuration(BaseModel):
    """Identity, broker and timing settings for one Homie device.

    ``device_id`` and ``base_topic`` become MQTT topic segments and are
    rejected (never coerced) when they don't match the topic ID pattern.
    Use the ``set_*`` helpers to get an :class:`InvalidIdentifier` on bad
    input; plain assignment is validated too and raises pydantic's
    ``ValidationError``.
    """

    model_config = ConfigDict(validate_assignment=True)

    device_id: str = Field(default_factory=_default_device_id, description="Device segment of every topic")
    broker_url: str = Field(default="tcp://127.0.0.1:1883", description="MQTT broker URL")
    base_topic: str = Field(default="homie", description="Root topic of the Homie tree")
    stats_interval_ms: int = Field(default=DEFAULT_STATS_INTERVAL_MS, gt=0)
    disconnect_retry_ms: int = Field(default=DEFAULT_DISCONNECT_RETRY_MS, gt=0)

    @field_validator("device_id", "base_topic")
    @classmethod
    def _validate_topic_id(cls, value: str, info) -> str:
        return _require_topic_id(info.field_name, value)

    def set_device_id(self, value: str) -> None:
        self.device_id = _require_topic_id("device_id", value)

    def set_base_topic(self, value: str) -> None:
        self.base_topic = _require_topic_id("base_topic", value)

    def set_broker_url(self, value: str) -> None:
        self.broker_url = value

    def set_stats_interval(self, value_ms: int) -> None:
        self.stats_interval_ms = value_ms

    def set_disconnect_retry(self, value_ms: int) -> None:
        self.disconnect_retry_ms = value_ms

    @property
    def stats_interval_seconds(self) -> float:
        return self.stats_interval_ms / 1000.0

    @property
    def disconnect_retry_seconds(self) -> float:
        return self.disconnect_retry_ms / 1000.0


class NodeConfig(BaseModel):
    """A node registered on the device at startup."""

    name: str
    type: str = Field(default="generic", description="Free-form node type announced as $type")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return _require_topic_id("name", value)


class Settings(BaseSettings):
    """Environment driven settings for the agent process."""

    device: Configuration = Field(default_factory=Configuration)
    firmware_name: str = Field(default="homie-agent", description="Published as $fw/name")
    firmware_version: str = Field(default="0.1.0", description="Published as $fw/version")
    service_name: str = "homie-agent"
    log_level: str = "INFO"
    mqtt_username: Optional[str] = None
    mqtt_password: SecretStr | None = None
    mqtt_keepalive: int = Field(default=60, ge=5)
    mqtt_qos: int = Field(default=1, ge=0, le=2)
    mqtt_connect_timeout_seconds: float = Field(default=5.0, gt=0)
    report_cpu_temperature: bool = Field(default=False, description="Publish $stats/cputemp from psutil")
    report_cpu_load: bool = Field(default=False, description="Publish $stats/cpuload from psutil")
    nodes: List[NodeConfig] = Field(default_factory=list)
    http_host: str = "0.0.0.0"
    http_port: int = 9000

    model_config = SettingsConfigDict(
        env_prefix="HOMIE_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
