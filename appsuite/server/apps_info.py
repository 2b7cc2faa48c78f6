"""Records describing the delivery workers and restaurants known to a server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

_U64_MAX = 2**64 - 1

Position = tuple[int, int]


def _u64(value: Any) -> int | None:
    """Return ``value`` if it is an unsigned 64-bit integer, otherwise None."""
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= _U64_MAX:
        return value
    return None


def _expect_u64(value: Any, what: str) -> int:
    number = _u64(value)
    if number is None:
        raise ValueError(f"invalid or missing unsigned integer {what!r}: {value!r}")
    return number


def _expect_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"invalid or missing string {what!r}: {value!r}")
    return value


def _expect_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"expected an object for {what!r}, got {value!r}")
    return value


def _expect_position(value: Any, what: str) -> Position:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        x, y = (_u64(coordinate) for coordinate in value)
        if x is not None and y is not None:
            return (x, y)
    raise ValueError(f"invalid or missing position {what!r}: {value!r}")


@dataclass
class DeliveryInfo:
    """A delivery worker available to take orders."""

    id: int
    position: Position
    socket: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "position": list(self.position), "socket": self.socket}

    @classmethod
    def from_dict(cls, data: Any) -> DeliveryInfo:
        """Build from decoded JSON; raise ValueError if a field is missing or invalid."""
        fields = _expect_mapping(data, "delivery")
        return cls(
            id=_expect_u64(fields.get("id"), "id"),
            position=_expect_position(fields.get("position"), "position"),
            socket=_expect_str(fields.get("socket"), "socket"),
        )


@dataclass
class RestaurantData:
    """A restaurant registered with the server."""

    name: str
    socket: str
    id: int
    position: Position

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "socket": self.socket,
            "id": self.id,
            "position": list(self.position),
        }

    @classmethod
    def from_dict(cls, data: Any) -> RestaurantData:
        """Build from decoded JSON; raise ValueError if a field is missing or invalid."""
        fields = _expect_mapping(data, "restaurant")
        return cls(
            name=_expect_str(fields.get("name"), "name"),
            socket=_expect_str(fields.get("socket"), "socket"),
            id=_expect_u64(fields.get("id"), "id"),
            position=_expect_position(fields.get("position"), "position"),
        )