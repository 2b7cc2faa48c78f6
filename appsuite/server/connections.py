"""TCP connections of a server: client sessions and the link to the leader."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Protocol

from .messages import UpdateNetworkState, decode_message, frame

log = logging.getLogger(__name__)

HANDSHAKE = "HANDSHAKE"


class ClientHandler(Protocol):
    """What a session needs from the server it reports to."""

    def client_connected(self, session: ClientSession) -> Any: ...

    def handle_client_message(self, session: ClientSession, title: str, payload: Any) -> Any: ...

    def pong(self, session: ClientSession) -> Any: ...


class StateHandler(Protocol):
    """What a leader connection needs from the server it reports to."""

    def update_network_state(self, state: UpdateNetworkState) -> Any: ...


async def _settle(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


def _peer(writer: asyncio.StreamWriter) -> str:
    info = writer.get_extra_info("peername")
    if isinstance(info, (tuple, list)) and len(info) >= 2:
        host, port = info[0], info[1]
        return f"[{host}]:{port}" if ":" in str(host) else f"{host}:{port}"
    return str(info)


async def _read_lines(reader: asyncio.StreamReader, peer: str) -> AsyncIterator[str]:
    """Yield decoded lines without their terminator until the stream ends."""
    while True:
        try:
            raw = await reader.readline()
        except (OSError, ValueError) as exc:
            log.error("[%s] Error de lectura: %s", peer, exc)
            return
        if not raw:
            return
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            log.error("[%s] Error de lectura: %s", peer, exc)
            continue
        yield text.removesuffix("\n").removesuffix("\r")


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except (OSError, RuntimeError):
        pass


class ClientSession:
    """A TCP connection from a client or a replica to this server.

    The first line received is answered with a handshake unless one was
    already sent; every later line is a JSON message handed to the server.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        server: ClientHandler,
        handshake_sent: bool = False,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.server = server
        self.handshake_sent = handshake_sent

    @property
    def addr(self) -> str:
        """The peer address as ``host:port``."""
        return _peer(self.writer)

    def send(self, text: str) -> bool:
        """Write ``text`` as one line; return False if the connection is closing."""
        if self.writer.is_closing():
            log.error("[%s] No se pudo escribir: conexion cerrada", self.addr)
            return False
        try:
            self.writer.write(frame(text).encode("utf-8"))
        except (OSError, RuntimeError) as exc:
            log.error("[%s] Error al escribir: %s", self.addr, exc)
            return False
        return True

    async def handle_line(self, line: str) -> None:
        """Process one received line."""
        if not self.handshake_sent:
            self.handshake_sent = True
            self.send(HANDSHAKE)
            log.info("[SERVER]: Handshake enviado a %s", self.addr)
            return
        try:
            title, payload = decode_message(line)
        except ValueError as exc:
            log.error("[SERVER]: Mensaje invalido de %s: %s", self.addr, exc)
            return
        if title == "ACK":
            log.info("[SERVER]: ACK recibido de %s. Cliente conectado", self.addr)
            return
        if title == "ping":
            log.info("[SERVER]: Ping recibido de una replica %s", self.addr)
            await _settle(self.server.pong(self))
            return
        await _settle(self.server.handle_client_message(self, title, payload))

    async def _drain(self) -> None:
        try:
            await self.writer.drain()
        except (OSError, RuntimeError) as exc:
            log.error("[%s] Error al escribir: %s", self.addr, exc)

    async def run(self) -> None:
        """Handle lines until the peer closes the connection."""
        peer = self.addr
        try:
            async for line in _read_lines(self.reader, peer):
                await self.handle_line(line)
                await self._drain()
        finally:
            await _close(self.writer)


class LeaderConnection:
    """A replica's TCP connection to the leader, receiving state snapshots."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        server: StateHandler,
        on_write_error: Callable[[], Any] | None = None,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.server = server
        self.on_write_error = on_write_error
        self.response_time = time.monotonic()
        self._closed = False

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        server: StateHandler,
        on_write_error: Callable[[], Any] | None = None,
    ) -> LeaderConnection:
        """Connect to the leader at ``host:port``; raise OSError on failure."""
        reader, writer = await asyncio.open_connection(host, port)
        return cls(reader, writer, server, on_write_error)

    @property
    def connected(self) -> bool:
        """Whether the connection is still usable."""
        return not self._closed and not self.writer.is_closing()

    def _fail(self) -> None:
        self._closed = True
        if self.on_write_error is not None:
            self.on_write_error()

    def send(self, text: str) -> bool:
        """Write ``text`` as one line; on failure report it and return False."""
        if not self.connected:
            log.error("Error al escribir al lider: conexion cerrada")
            self._fail()
            return False
        try:
            self.writer.write(frame(text).encode("utf-8"))
        except (OSError, RuntimeError) as exc:
            log.error("Error al escribir al lider: %s", exc)
            self._fail()
            return False
        return True

    async def handle_line(self, line: str) -> UpdateNetworkState | None:
        """Apply a ``pong`` snapshot from the leader; return it, or None if ignored."""
        line = line.strip()
        log.debug("Receive '%s' from leader", line)
        if not line.startswith("{"):
            return None
        try:
            data = json.loads(line)
        except ValueError as exc:
            log.error("Error al parsear JSON: %s", exc)
            return None
        if not isinstance(data, dict):
            return None
        title = data.get("title")
        if not isinstance(title, str) or "payload" not in data:
            return None
        if title != "pong":
            log.error("Mensaje no esperado: %s", title)
            return None
        self.response_time = time.monotonic()
        state = UpdateNetworkState.from_dict(data["payload"])
        await _settle(self.server.update_network_state(state))
        return state

    async def run(self) -> None:
        """Handle lines until the leader closes the connection."""
        try:
            async for line in _read_lines(self.reader, _peer(self.writer)):
                await self.handle_line(line)
        finally:
            self._closed = True
            await _close(self.writer)

    async def close(self) -> None:
        self._closed = True
        await _close(self.writer)


async def serve_connections(
    host: str,
    port: int,
    server: ClientHandler,
    handshake_sent: bool = False,
) -> asyncio.Server:
    """Accept TCP connections, running a ``ClientSession`` for each one."""

    async def accept(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        session = ClientSession(reader, writer, server, handshake_sent)
        log.info("[%s] Nueva conexion", session.addr)
        await _settle(server.client_connected(session))
        await session.run()

    return await asyncio.start_server(accept, host, port)