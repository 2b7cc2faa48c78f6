"""Wire format of the messages exchanged between servers and clients."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, TypeVar

from .apps_info import (
    DeliveryInfo,
    Position,
    RestaurantData,
    _expect_mapping,
    _expect_position,
    _expect_str,
    _expect_u64,
    _u64,
)

T = TypeVar("T")

_DIGITS = re.compile(r"[0-9]+")


def encode_message(title: str, payload: Any = None) -> str:
    """Serialise a message as a ``{"title": ..., "payload": ...}`` JSON object."""
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()
    return json.dumps(
        {"title": title, "payload": payload}, separators=(",", ":"), ensure_ascii=False
    )


def decode_message(line: str) -> tuple[str, Any]:
    """Split a JSON message into its title and payload; raise ValueError if malformed."""
    data = json.loads(line.strip())
    if not isinstance(data, dict):
        raise ValueError(f"message is not a JSON object: {line!r}")
    title = data.get("title")
    if not isinstance(title, str):
        raise ValueError(f"message has no title: {line!r}")
    return title, data.get("payload")


def frame(text: str) -> str:
    """Terminate ``text`` with a newline unless it already ends with one."""
    return text if text.endswith("\n") else text + "\n"


def _fallback(build: Callable[[], T], default: T) -> T:
    try:
        return build()
    except ValueError:
        return default


def _fields(data: Any) -> Mapping[str, Any]:
    return data if isinstance(data, Mapping) else {}


def _expect_u64_list(value: Any, what: str) -> list[int]:
    if not isinstance(value, list):
        raise ValueError(f"expected a list for {what!r}, got {value!r}")
    return [_expect_u64(item, what) for item in value]


def _u64_or_zero(value: Any) -> int:
    number = _u64(value)
    return 0 if number is None else number


def _replica_sockets(value: Any) -> dict[int, str]:
    sockets: dict[int, str] = {}
    for key, socket in _expect_mapping(value, "udp_sockets_replicas").items():
        if not _DIGITS.fullmatch(str(key)):
            raise ValueError(f"invalid replica id: {key!r}")
        sockets[_expect_u64(int(key), "replica id")] = _expect_str(socket, "socket")
    return sockets


@dataclass
class UpdateNetworkState:
    """Snapshot of the network state that the leader sends to its replicas."""

    ids_count: int = 0
    deliveries: dict[str, DeliveryInfo] = field(default_factory=dict)
    customers: dict[str, int] = field(default_factory=dict)
    restaurants: dict[str, RestaurantData] = field(default_factory=dict)
    udp_sockets_replicas: dict[int, str] = field(default_factory=dict)
    disconnected_servers: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ids_count": self.ids_count,
            "deliveries": {key: info.to_dict() for key, info in self.deliveries.items()},
            "customers": dict(self.customers),
            "restaurants": {key: data.to_dict() for key, data in self.restaurants.items()},
            "udp_sockets_replicas": {
                str(key): socket for key, socket in self.udp_sockets_replicas.items()
            },
            "disconnected_servers": list(self.disconnected_servers),
        }

    @classmethod
    def from_dict(cls, data: Any) -> UpdateNetworkState:
        """Decode a snapshot; any field that cannot be decoded takes its empty default."""
        fields = _fields(data)
        return cls(
            ids_count=_u64_or_zero(fields.get("ids_count")),
            deliveries=_fallback(
                lambda: {
                    key: DeliveryInfo.from_dict(value)
                    for key, value in _expect_mapping(fields.get("deliveries"), "deliveries").items()
                },
                {},
            ),
            customers=_fallback(
                lambda: {
                    key: _expect_u64(value, "customer id")
                    for key, value in _expect_mapping(fields.get("customers"), "customers").items()
                },
                {},
            ),
            restaurants=_fallback(
                lambda: {
                    key: RestaurantData.from_dict(value)
                    for key, value in _expect_mapping(
                        fields.get("restaurants"), "restaurants"
                    ).items()
                },
                {},
            ),
            udp_sockets_replicas=_fallback(
                lambda: _replica_sockets(fields.get("udp_sockets_replicas")), {}
            ),
            disconnected_servers=_fallback(
                lambda: _expect_u64_list(
                    fields.get("disconnected_servers"), "disconnected_servers"
                ),
                [],
            ),
        )


@dataclass
class Election:
    """Ring election message carrying the ids of the replicas it has visited."""

    disconnected_leader_id: int
    server_ids: list[int]
    sequence_number: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "disconnected_leader_id": self.disconnected_leader_id,
            "server_ids": list(self.server_ids),
            "sequence_number": self.sequence_number,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Election:
        """Decode an election; undecodable fields default to zero or an empty list."""
        fields = _fields(data)
        return cls(
            disconnected_leader_id=_u64_or_zero(fields.get("disconnected_leader_id")),
            server_ids=_fallback(
                lambda: _expect_u64_list(fields.get("server_ids"), "server_ids"), []
            ),
            sequence_number=_u64_or_zero(fields.get("sequence_number")),
        )


@dataclass
class NewLeader:
    """Announcement of the leader chosen by an election."""

    id_sender: int
    leader_id: int
    sequence_number: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id_sender": self.id_sender,
            "leader_id": self.leader_id,
            "sequence_number": self.sequence_number,
        }

    @classmethod
    def from_dict(cls, data: Any) -> NewLeader:
        """Decode an announcement; undecodable fields default to zero."""
        fields = _fields(data)
        return cls(
            id_sender=_u64_or_zero(fields.get("id_sender")),
            leader_id=_u64_or_zero(fields.get("leader_id")),
            sequence_number=_u64_or_zero(fields.get("sequence_number")),
        )


@dataclass
class NeighborAck:
    """Acknowledgement of a ring message by the neighbouring replica."""

    id: int
    message: str
    sequence_number: int

    @classmethod
    def from_dict(cls, data: Any) -> NeighborAck:
        """Decode an acknowledgement; undecodable fields take empty defaults."""
        fields = _fields(data)
        message = fields.get("message")
        return cls(
            id=_u64_or_zero(fields.get("id")),
            message=message if isinstance(message, str) else "",
            sequence_number=_u64_or_zero(fields.get("sequence_number")),
        )


@dataclass
class RequestDelivery:
    """A restaurant's request for a delivery worker to carry an order."""

    delivery_id: int
    order_id: int
    restaurant_position: Position
    customer_position: Position

    def to_dict(self) -> dict[str, Any]:
        return {
            "delivery_id": self.delivery_id,
            "order_id": self.order_id,
            "restaurant_position": list(self.restaurant_position),
            "customer_position": list(self.customer_position),
        }

    @classmethod
    def from_dict(cls, data: Any) -> RequestDelivery:
        """Decode a request; raise ValueError if a field is missing or invalid."""
        fields = _expect_mapping(data, "request_delivery")
        return cls(
            delivery_id=_expect_u64(fields.get("delivery_id"), "delivery_id"),
            order_id=_expect_u64(fields.get("order_id"), "order_id"),
            restaurant_position=_expect_position(
                fields.get("restaurant_position"), "restaurant_position"
            ),
            customer_position=_expect_position(
                fields.get("customer_position"), "customer_position"
            ),
        )


@dataclass
class FreeDeliveryWorker:
    """A delivery worker that finished an order and is available again."""

    id: int
    position: Position
    socket: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "position": list(self.position), "socket": self.socket}

    @classmethod
    def from_dict(cls, data: Any) -> FreeDeliveryWorker:
        """Decode the notice; raise ValueError if a field is missing or invalid."""
        fields = _expect_mapping(data, "free_delivery")
        return cls(
            id=_expect_u64(fields.get("id"), "id"),
            position=_expect_position(fields.get("position"), "position"),
            socket=_expect_str(fields.get("socket"), "socket"),
        )