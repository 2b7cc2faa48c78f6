"""A server node of the delivery network: leader or replica."""

from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import re
import sys
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Mapping, Protocol, Sequence

from .apps_info import _expect_mapping, _expect_position, _expect_str, _expect_u64
from .connections import LeaderConnection, serve_connections
from .election import (
    ACK_TIMEOUT,
    RING_SIZE,
    ElectionState,
    Outgoing,
    get_neighbor_id,
)
from .messages import (
    Election,
    FreeDeliveryWorker,
    NeighborAck,
    NewLeader,
    RequestDelivery,
    UpdateNetworkState,
    encode_message,
)
from .registry import (
    DEFAULT_MAX_DELIVERY_DISTANCE,
    DEFAULT_MAX_RESTAURANT_DISTANCE,
    Registry,
)
from .udp import GetLeader, UdpEndpoint

log = logging.getLogger(__name__)

_DIGITS = re.compile(r"\+?[0-9]+")

# Client messages whose malformed payloads are logged and dropped; the other
# titles raise ValueError on a malformed payload.
_LENIENT_TITLES = frozenset(
    {"login", "new_restaurant", "login_delivery", "get_restaurants", "new_replica"}
)


class Session(Protocol):
    """Anything that can deliver a line of text to a connected peer."""

    def send(self, text: str) -> bool: ...


@dataclass(frozen=True)
class NodeConfig:
    """Addresses and timings shared by every node of the network."""

    host: str = "127.0.0.1"
    tcp_base_port: int = 8080
    udp_base_port: int = 9000
    max_servers: int = RING_SIZE
    max_restaurant_distance: int = DEFAULT_MAX_RESTAURANT_DISTANCE
    max_delivery_distance: int = DEFAULT_MAX_DELIVERY_DISTANCE
    ping_interval: float = 0.5
    ack_timeout: float = ACK_TIMEOUT
    connect_retry_delay: float = 0.1
    connect_retries: int = 5

    def tcp_port(self, server_id: int) -> int:
        return self.tcp_base_port + server_id

    def udp_port(self, server_id: int) -> int:
        return self.udp_base_port + server_id

    def tcp_address(self, server_id: int) -> str:
        """The ``host:port`` where server ``server_id`` accepts TCP connections."""
        return f"{self.host}:{self.tcp_port(server_id)}"

    def udp_address(self, server_id: int) -> str:
        """The ``host:port`` of server ``server_id``'s UDP endpoint."""
        return f"{self.host}:{self.udp_port(server_id)}"


class Server:
    """State and message handling of one server node."""

    def __init__(
        self,
        config: NodeConfig,
        server_id: int,
        *,
        is_leader: bool = False,
        udp: Any = None,
    ) -> None:
        self.config = config
        self.id = server_id
        self.registry = Registry(
            max_restaurant_distance=config.max_restaurant_distance,
            max_delivery_distance=config.max_delivery_distance,
        )
        self.election = ElectionState(
            id=server_id,
            address_of=config.udp_address,
            id_leader=server_id if is_leader else 0,
            im_leader=is_leader,
            actual_neighbor_id=get_neighbor_id(server_id) if is_leader else 0,
        )
        self.udp = udp
        self.leader_connection: Any = None
        self.customers_address: dict[int, Session] = {}
        self.delivery_workers_address: dict[int, Session] = {}
        self.servers: dict[int, Session] = {}
        self._listener: asyncio.Server | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    # -- client connections -------------------------------------------------

    def client_connected(self, session: Any) -> None:
        """Note a new incoming TCP connection."""
        log.info("[%s] Cliente conectado", getattr(session, "addr", session))

    def handle_client_message(self, session: Session, title: str, payload: Any) -> None:
        """Dispatch a message received from a client or replica connection."""
        handler = getattr(self, f"_on_{title}", None) if title.isidentifier() else None
        if handler is None:
            log.error("[SERVER]: Mensaje %s invalido", title)
            return
        try:
            handler(session, _expect_mapping(payload, title))
        except ValueError as exc:
            if title not in _LENIENT_TITLES:
                raise
            log.error("Error al deserializar el mensaje %s: %s", title, exc)

    def _on_login(self, session: Session, fields: Mapping[str, Any]) -> None:
        name = _expect_str(fields.get("name"), "name")
        customer_id = self.registry.customer_connected(name)
        self.customers_address[customer_id] = session
        session.send(encode_message("login_successful", {"id": customer_id}))

    def _on_new_restaurant(self, session: Session, fields: Mapping[str, Any]) -> None:
        socket = _expect_str(fields.get("socket"), "socket")
        name = _expect_str(fields.get("name"), "name")
        position = _expect_position(fields.get("position"), "position")
        self.registry.new_restaurant(name, socket, position)

    def _on_login_delivery(self, session: Session, fields: Mapping[str, Any]) -> None:
        name = _expect_str(fields.get("name"), "name")
        worker_id = self.registry.delivery_worker_connected(name)
        self.delivery_workers_address[worker_id] = session
        session.send(encode_message("login_successful_delivery", {"id": worker_id}))

    def _on_register_delivery(self, session: Session, fields: Mapping[str, Any]) -> None:
        position = _expect_position(fields.get("position"), "position")
        socket = _expect_str(fields.get("socket"), "socket")
        info = self.registry.register_delivery(position, socket)
        self.delivery_workers_address[info.id] = session
        session.send(
            encode_message(
                "login_successful_delivery",
                {"id": info.id, "position": list(position), "delivery_socket": socket},
            )
        )

    def _on_get_deliveries(self, session: Session, fields: Mapping[str, Any]) -> None:
        requester = _expect_u64(fields.get("id"), "id")
        position = _expect_position(fields.get("position"), "position")
        nearby = self.registry.nearby_deliveries(position)
        log.info(
            "[SERVER] NearbyDeliveries para restaurant #%s → %s repartidores",
            requester,
            len(nearby),
        )
        session.send(
            encode_message(
                "nearby_deliveries", {"nearby_deliveries": [info.to_dict() for info in nearby]}
            )
        )

    def _on_get_restaurants(self, session: Session, fields: Mapping[str, Any]) -> None:
        _expect_u64(fields.get("id"), "id")
        position = _expect_position(fields.get("position"), "position")
        nearby = self.registry.nearby_restaurants(position)
        session.send(
            encode_message(
                "nearby_restaurants",
                {"nearby_restaurants": [restaurant.to_dict() for restaurant in nearby]},
            )
        )

    def _on_delivery_status(self, session: Session, fields: Mapping[str, Any]) -> None:
        customer_id = _expect_u64(fields.get("customer_id"), "customer_id")
        message = _expect_str(fields.get("message"), "message")
        customer = self.customers_address.get(customer_id)
        if customer is None:
            log.error("No encontré cliente con ID %s", customer_id)
            return
        customer.send(encode_message("status_update", {"message": message}))

    def _on_request_delivery(self, session: Session, fields: Mapping[str, Any]) -> None:
        request = RequestDelivery.from_dict(fields)
        worker = self.delivery_workers_address.get(request.delivery_id)
        if worker is None:
            log.error("[SERVER] No encontré delivery #%s", request.delivery_id)
            return
        worker.send(
            encode_message(
                "request_delivery",
                {
                    "order_id": request.order_id,
                    "restaurant_position": list(request.restaurant_position),
                    "customer_position": list(request.customer_position),
                },
            )
        )

    def _on_busy_delivery(self, session: Session, fields: Mapping[str, Any]) -> None:
        self.registry.busy_delivery(_expect_u64(fields.get("id"), "id"))

    def _on_free_delivery(self, session: Session, fields: Mapping[str, Any]) -> None:
        notice = FreeDeliveryWorker.from_dict(fields)
        self.registry.free_delivery(notice.id, notice.position, notice.socket)

    def _on_new_replica(self, session: Session, fields: Mapping[str, Any]) -> None:
        replica_id = _expect_u64(fields.get("id"), "id")
        socket = _expect_str(fields.get("socket"), "socket")
        self.election.replica_connected(replica_id, socket)
        self.servers[replica_id] = session
        for replica in list(self.servers.values()):
            log.info("Enviando pong a TODAS las replicas")
            self.pong(replica)

    # -- state replication --------------------------------------------------

    def ping(self) -> bool:
        """Ping the leader; start an election if it is gone. Return whether a ping was sent."""
        connection = self.leader_connection
        if connection is None or self.election.im_leader:
            return False
        if not connection.connected:
            log.info("Lider %s desconectado", self.election.id_leader)
            self.leader_connection = None
            self.election.election_on_course = True
            self._run_election(self.election.start_election)
            return False
        return bool(connection.send(encode_message("ping", None)))

    def pong(self, session: Session) -> UpdateNetworkState:
        """Send the whole network state to a replica and return it."""
        state = self.registry.network_state(
            self.election.disconnected_servers, self.election.udp_sockets_replicas
        )
        log.info("Enviando pong a una replica")
        session.send(encode_message("pong", state))
        return state

    def update_network_state(self, state: UpdateNetworkState) -> None:
        """Replace the local state with a snapshot from the leader."""
        self.registry.apply_network_state(state)
        self.election.udp_sockets_replicas = dict(state.udp_sockets_replicas)
        self.election.disconnected_servers = list(state.disconnected_servers)

    # -- election -----------------------------------------------------------

    def handle_datagram(self, message: Any, addr: str) -> None:
        """React to a decoded UDP message received from ``addr``."""
        if isinstance(message, Election):
            self._run_election(functools.partial(self.election.on_election, message))
        elif isinstance(message, NewLeader):
            self._run_election(functools.partial(self.election.on_new_leader, message))
        elif isinstance(message, NeighborAck):
            self.election.on_ack(message)
        elif isinstance(message, GetLeader):
            log.info("[UDP] get_leader recibido")
            self._send_udp(str(self.election.id_leader), addr)
        else:
            log.debug("Mensaje UDP desconocido: %r", message)

    def _run_election(self, call: Callable[[], list[Outgoing]]) -> None:
        self.election.has_leader_connection = self.leader_connection is not None
        actions = call()
        if not self.election.has_leader_connection:
            self.leader_connection = None
        self._perform(actions)

    def _perform(self, actions: list[Outgoing]) -> None:
        for action in actions:
            kind = action.kind
            if kind is Outgoing.Kind.SEND_UDP:
                self._send_udp(action.message, action.dst)
            elif kind is Outgoing.Kind.WAIT_ACK:
                self._spawn(
                    self._wait_ack(action.neighbor_id, action.message, action.sequence_number)
                )
            elif kind is Outgoing.Kind.NEW_LEADER and action.new_leader is not None:
                self._run_election(
                    functools.partial(self.election.on_new_leader, action.new_leader)
                )
            elif kind is Outgoing.Kind.BECOME_LEADER:
                self._spawn(self._become_leader())
            elif kind is Outgoing.Kind.CONNECT_TO_LEADER:
                self._spawn(self.connect_to_leader())

    def _send_udp(self, message: str, dst: str) -> None:
        if self.udp is None:
            log.error("No hay UdpSender para enviar %s a %s", message, dst)
            return
        self.udp.send(message, dst)

    async def _wait_ack(self, neighbor_id: int, message: str, sequence_number: int) -> None:
        await asyncio.sleep(self.config.ack_timeout)
        self._run_election(
            functools.partial(self.election.check_ack, neighbor_id, message, sequence_number)
        )

    async def _become_leader(self) -> None:
        try:
            await self._listen(handshake_sent=False)
        except OSError as exc:
            log.error("Error al escuchar en %s: %s", self.config.tcp_address(self.id), exc)

    def _leader_write_failed(self) -> None:
        self._run_election(self.election.start_election)

    async def connect_to_leader(self) -> bool:
        """Connect to the current leader, retrying a few times; return whether it worked."""
        await asyncio.sleep(self.config.connect_retry_delay)
        log.info("Conectandome al server lider!")
        port = self.config.tcp_port(self.election.id_leader)
        for attempt in range(self.config.connect_retries + 1):
            try:
                connection = await LeaderConnection.open(
                    self.config.host, port, self, self._leader_write_failed
                )
            except OSError:
                log.info("Fallo la conexion al nuevo lider, reintentando")
                if attempt < self.config.connect_retries:
                    await asyncio.sleep(self.config.connect_retry_delay)
                continue
            self._set_leader(self.election.id_leader, connection)
            self.election.election_on_course = False
            log.info("Reconectado al nuevo lider")
            return True
        log.error("Fallo al conectarse al lider.")
        return False

    # -- lifecycle ----------------------------------------------------------

    def _set_leader(self, leader_id: int, connection: Any) -> None:
        self.election.id_leader = leader_id
        self.leader_connection = connection
        run = getattr(connection, "run", None)
        if run is not None:
            self._spawn(run())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _open_udp(self) -> UdpEndpoint:
        self.udp = await UdpEndpoint.open(
            self.config.host, self.config.udp_port(self.id), self.handle_datagram
        )
        return self.udp

    async def _listen(self, handshake_sent: bool) -> asyncio.Server:
        if self._listener is None:
            self._listener = await serve_connections(
                self.config.host, self.config.tcp_port(self.id), self, handshake_sent
            )
            log.info("Esperando conexiones en %s", self.config.tcp_address(self.id))
        return self._listener

    async def _serve_forever(self) -> None:
        while True:
            await asyncio.sleep(self.config.ping_interval)
            if not self.election.im_leader and not self.election.election_on_course:
                self.ping()

    async def _close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._listener is not None:
            self._listener.close()
            await self._listener.wait_closed()
            self._listener = None
        if self.leader_connection is not None and hasattr(self.leader_connection, "close"):
            await self.leader_connection.close()
        self.leader_connection = None
        if self.udp is not None and hasattr(self.udp, "close"):
            self.udp.close()


async def run_leader(config: NodeConfig, server_id: int) -> None:
    """Run a leader node until cancelled; raise OSError if a socket cannot be bound."""
    server = Server(config, server_id, is_leader=True)
    try:
        await server._listen(handshake_sent=True)
        await server._open_udp()
        await server._serve_forever()
    finally:
        await server._close()


async def _connect_initial(
    config: NodeConfig, server: Server, server_id: int
) -> tuple[LeaderConnection | None, int]:
    leader_id = 2 if server_id == 1 else 1
    try:
        connection = await LeaderConnection.open(
            config.host, config.tcp_port(leader_id), server, server._leader_write_failed
        )
        return connection, leader_id
    except OSError:
        pass
    for candidate in range(config.max_servers, 0, -1):
        if candidate == server_id:
            continue
        try:
            connection = await LeaderConnection.open(
                config.host, config.tcp_port(candidate), server, server._leader_write_failed
            )
        except OSError as exc:
            log.error("No se pudo conectar al líder %s: %s", candidate, exc)
            continue
        log.info("Conectado al líder: %s", candidate)
        return connection, candidate
    return None, leader_id


async def run_replica(config: NodeConfig, server_id: int) -> bool:
    """Run a replica node until cancelled; return False if it cannot start."""
    server = Server(config, server_id)
    try:
        try:
            await server._open_udp()
        except OSError as exc:
            log.error("Error al bindear socket UDP en %s: %s", config.udp_address(server_id), exc)
            return False
        log.info("Iniciando réplica")
        connection, leader_id = await _connect_initial(config, server, server_id)
        if connection is None:
            log.error("No se pudo conectar a ningún líder, terminando réplica")
            return False
        announcement = encode_message(
            "new_replica", {"id": server_id, "socket": config.udp_address(server_id)}
        )
        if not connection.send(announcement):
            log.error("Error al enviar mensaje de nueva réplica")
            await connection.close()
            return False
        server._set_leader(leader_id, connection)
        await server._serve_forever()
        return True
    finally:
        await server._close()


def _parse_bool(text: str) -> bool:
    if text not in ("true", "false"):
        raise argparse.ArgumentTypeError("Booleano")
    return text == "true"


def main(argv: Sequence[str] | None = None) -> int:
    """Start a node: ``<id> <true|false>``, the flag saying whether it is the leader."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Uso: <id> <true|false>", file=sys.stderr)
        return 2
    if not _DIGITS.fullmatch(args[0]):
        print("ID entero", file=sys.stderr)
        return 2
    if len(args) < 2:
        print("Falta flag de lider", file=sys.stderr)
        return 2
    try:
        is_leader = _parse_bool(args[1])
    except argparse.ArgumentTypeError as exc:
        print(exc, file=sys.stderr)
        return 2
    server_id = int(args[0])

    logging.basicConfig(level=logging.DEBUG)
    config = NodeConfig()
    try:
        if is_leader:
            asyncio.run(run_leader(config, server_id))
        elif not asyncio.run(run_replica(config, server_id)):
            return 1
    except OSError as exc:
        log.error("Error bind %s: %s", config.tcp_address(server_id), exc)
        return 1
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())