"""UDP endpoint used for leader election between servers."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Union

from .messages import Election, NeighborAck, NewLeader, encode_message

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class GetLeader:
    """Request for the id of the current leader."""


DatagramMessage = Union[Election, NewLeader, NeighborAck, GetLeader]
Handler = Callable[[DatagramMessage, str], None]

_PARSERS: dict[str, Callable[[Any], DatagramMessage]] = {
    "election": Election.from_dict,
    "new_leader": NewLeader.from_dict,
    "ack": NeighborAck.from_dict,
}


def parse_datagram(message: str) -> DatagramMessage | None:
    """Decode a JSON datagram; return None if it is not a known message."""
    if not message.lstrip().startswith("{"):
        return None
    try:
        data = json.loads(message)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    name = data["title"] if "title" in data else data.get("name")
    if not isinstance(name, str):
        return None
    if name == "get_leader":
        return GetLeader()
    parser = _PARSERS.get(name)
    if parser is None:
        log.debug("Unknown UDP message: %s", name)
        return None
    return parser(data.get("payload"))


def build_ack(sequence_number: int, message: str) -> str:
    """Build the acknowledgement sent back for a received ring message."""
    return encode_message(
        "ack", {"id": 0, "message": message, "sequence_number": sequence_number}
    )


def _split_address(address: str) -> tuple[str, int]:
    host, separator, port = address.rpartition(":")
    if not separator or not host:
        raise ValueError(f"invalid address: {address!r}")
    return host.strip("[]"), int(port)


def _format_address(addr: Any) -> str:
    host, port = addr[0], addr[1]
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


class UdpEndpoint(asyncio.DatagramProtocol):
    """Sends datagrams and hands decoded incoming ones to a handler.

    Election and new-leader messages are acknowledged to their sender
    before being passed on.
    """

    def __init__(self, handler: Handler | None = None) -> None:
        self.handler = handler
        self.transport: asyncio.DatagramTransport | None = None

    @classmethod
    async def open(cls, host: str, port: int, handler: Handler | None = None) -> UdpEndpoint:
        """Bind a new endpoint to ``host:port``."""
        loop = asyncio.get_running_loop()
        _, endpoint = await loop.create_datagram_endpoint(
            lambda: cls(handler), local_addr=(host, port)
        )
        return endpoint

    @property
    def address(self) -> str:
        """The local address as ``host:port``."""
        if self.transport is None:
            raise RuntimeError("endpoint is not bound")
        return _format_address(self.transport.get_extra_info("sockname"))

    def close(self) -> None:
        if self.transport is not None:
            self.transport.close()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def connection_lost(self, exc: Exception | None) -> None:
        self.transport = None

    def error_received(self, exc: Exception) -> None:
        log.error("UDP socket error: %s", exc)

    def send(self, message: str, dst: str) -> None:
        """Send ``message`` to ``dst`` (``host:port``); failures are logged."""
        log.debug("Sending %s to %s", message, dst)
        if self.transport is None:
            log.error("Cannot send %s: endpoint is not bound", message)
            return
        try:
            self.transport.sendto(message.encode("utf-8"), _split_address(dst))
        except (OSError, ValueError) as exc:
            log.error("Falló el envio del mensaje %s. Error: %s", message, exc)

    def datagram_received(self, data: bytes, addr: Any) -> None:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            log.error("Error al convertir los bytes leidos a string, ignorando mensaje")
            return
        log.debug("Received UDP '%s'", text.strip())
        message = parse_datagram(text)
        if message is None:
            return
        sender = _format_address(addr)
        if isinstance(message, (Election, NewLeader)):
            self.send(build_ack(message.sequence_number, text), sender)
        if self.handler is None:
            log.error("No handler set, dropping %r", message)
            return
        self.handler(message, sender)