"""Homie nodes and the registry the device enumerates on connect."""
from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Callable, Dict, Iterator, List, Optional

from homie_agent.errors import InvalidIdentifier
from homie_agent.topics import is_valid_topic_id

if TYPE_CHECKING:
    from homie_agent.device import HomieDevice


class Node:
    """A functional unit of a device, published under ``{device}/{name}/``.

    Subclasses override :meth:`on_connect` (calling ``super()``) to announce
    their properties and current values whenever the device (re)connects.
    """

    properties: tuple[str, ...] = ()

    def __init__(self, device: "HomieDevice", name: str, type: str) -> None:
        self.device = device
        self.name = name
        self.type = type

    def publish(self, attribute: str, payload: str, retained: bool = True) -> bool:
        return self.device.publish(f"{self.name}/{attribute}", payload, retained)

    def on_connect(self) -> None:
        self.publish("$name", self.name)
        self.publish("$type", self.type)
        self.publish("$properties", ",".join(self.properties))

    def __repr__(self) -> str:
        return f"Node(name={self.name!r}, type={self.type!r})"


NodeFactory = Callable[["HomieDevice", str, str], Node]


class NodeRegistry:
    """Insertion-ordered mapping of node name to node.

    Registration is idempotent: asking for an existing name returns the node
    already registered and ignores the type. Iteration works on a snapshot so
    nodes registered from another thread never disturb a running pass.
    """

    def __init__(self, device: "HomieDevice") -> None:
        self._device = device
        self._lock = threading.Lock()
        self._nodes: Dict[str, Node] = {}

    def create_node(self, name: str, type: str, factory: Optional[NodeFactory] = None) -> Node:
        if not is_valid_topic_id(name):
            raise InvalidIdentifier("name", name)
        with self._lock:
            existing = self._nodes.get(name)
            if existing is not None:
                return existing
            node = (factory or Node)(self._device, name, type)
            self._nodes[name] = node
            return node

    def get(self, name: str) -> Optional[Node]:
        with self._lock:
            return self._nodes.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._nodes)

    def snapshot(self) -> List[Node]:
        with self._lock:
            return list(self._nodes.values())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._nodes

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.snapshot())


__all__ = ["Node", "NodeFactory", "NodeRegistry"]
