"""Exception hierarchy for the Homie device agent.

Configuration errors surface immediately to the caller. Connection and
publish errors are raised by the transport layer and absorbed by the device
state machine, which turns them into state transitions or log entries.
"""

from __future__ import annotations


class HomieError(Exception):
    """Base class for all homie-agent errors."""


class InvalidIdentifier(HomieError, ValueError):
    """A value does not match the Homie topic identifier pattern.

    Attributes:
        field: Name of the field being set (e.g. ``device_id``)
        value: The rejected value
    """

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"{field} {value!r} doesn't match the allowed topic ID pattern")


class ConnectFailure(HomieError):
    """The transport could not establish a broker session.

    Attributes:
        broker_url: Broker the connection was attempted against
        reason: Specific failure reason
    """

    def __init__(self, broker_url: str, reason: str):
        self.broker_url = broker_url
        self.reason = reason
        super().__init__(f"Couldn't connect to {broker_url}: {reason}")


class PublishFailure(HomieError):
    """A message could not be handed to the broker.

    Attributes:
        topic: Fully qualified topic of the dropped message
        reason: Specific failure reason
    """

    def __init__(self, topic: str, reason: str):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Couldn't publish to {topic}: {reason}")


class LoopInterrupted(HomieError):
    """A state machine wait was cut short by a shutdown request."""


__all__ = [
    "ConnectFailure",
    "HomieError",
    "InvalidIdentifier",
    "LoopInterrupted",
    "PublishFailure",
]
