"""Ring-based leader election between server replicas.

``ElectionState`` holds a replica's view of the ring and reacts to election
events. It performs no I/O: every handler returns the ``Outgoing`` actions
the caller must carry out (send a datagram, wait for an acknowledgement,
start acting as leader, and so on).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .messages import Election, NeighborAck, NewLeader, encode_message

log = logging.getLogger(__name__)

RING_SIZE = 5
ACK_TIMEOUT = 0.3
_MAX_NEIGHBOR_HOPS = 5


def get_neighbor_id(server_id: int) -> int:
    """Return the id of the next server in the ring."""
    return 1 if server_id == RING_SIZE else server_id + 1


@dataclass(frozen=True)
class Outgoing:
    """An action that the owner of an ``ElectionState`` has to perform."""

    class Kind(Enum):
        SEND_UDP = "send_udp"
        """Send ``message`` to ``dst`` over UDP."""
        WAIT_ACK = "wait_ack"
        """After ``ACK_TIMEOUT`` call ``check_ack`` with the carried fields."""
        NEW_LEADER = "new_leader"
        """Deliver ``new_leader`` back to this state's ``on_new_leader``."""
        BECOME_LEADER = "become_leader"
        """Start accepting client and replica connections."""
        CONNECT_TO_LEADER = "connect_to_leader"
        """Open a connection to the current leader."""

    kind: Kind
    message: str = ""
    dst: str = ""
    neighbor_id: int = 0
    sequence_number: int = 0
    new_leader: NewLeader | None = None


def _send(message: str, dst: str) -> Outgoing:
    return Outgoing(Outgoing.Kind.SEND_UDP, message=message, dst=dst)


def _wait_ack(neighbor_id: int, message: str, sequence_number: int) -> Outgoing:
    return Outgoing(
        Outgoing.Kind.WAIT_ACK,
        message=message,
        neighbor_id=neighbor_id,
        sequence_number=sequence_number,
    )


@dataclass
class ElectionState:
    """A replica's view of the ring and of the election in progress."""

    id: int
    address_of: Callable[[int], str]
    id_leader: int = 0
    im_leader: bool = False
    actual_neighbor_id: int = 0
    sequence_number: int = 0
    disconnected_servers: list[int] = field(default_factory=list)
    message_received_ack: set[int] = field(default_factory=set)
    received_neighbor_ack: bool = False
    election_on_course: bool = False
    has_leader_connection: bool = False
    udp_sockets_replicas: dict[int, str] = field(default_factory=dict)

    def update_neighbor(self, neighbor_id: int) -> bool:
        """Move to the next connected neighbour; return False if there is none."""
        if self.actual_neighbor_id not in self.disconnected_servers:
            return True
        self.actual_neighbor_id = get_neighbor_id(neighbor_id)
        for _ in range(_MAX_NEIGHBOR_HOPS):
            if (
                self.actual_neighbor_id not in self.disconnected_servers
                and self.actual_neighbor_id != self.id
            ):
                return True
            self.actual_neighbor_id = get_neighbor_id(self.actual_neighbor_id)
        return False

    def _self_elected(self) -> list[Outgoing]:
        log.info("No hay replicas conectadas, soy el lider")
        announcement = NewLeader(
            id_sender=self.id, leader_id=self.id, sequence_number=self.sequence_number
        )
        self.sequence_number += 1
        return [Outgoing(Outgoing.Kind.NEW_LEADER, new_leader=announcement)]

    def _send_to_neighbor(self, message: str, sequence_number: int) -> list[Outgoing]:
        return [
            _send(message, self.address_of(self.actual_neighbor_id)),
            _wait_ack(self.actual_neighbor_id, message, sequence_number),
        ]

    def start_election(self) -> list[Outgoing]:
        """Mark the leader as down and send an election to the next neighbour."""
        log.info("Marcando server %s como desconectado por StartElection", self.id_leader)
        self.disconnected_servers.append(self.id_leader)
        if not self.update_neighbor(self.actual_neighbor_id):
            return self._self_elected()
        election = Election(
            disconnected_leader_id=self.id_leader,
            server_ids=[self.id],
            sequence_number=self.sequence_number,
        )
        self.sequence_number += 1
        serialized = encode_message("election", election)
        self.sequence_number += 1
        return self._send_to_neighbor(serialized, election.sequence_number)

    def on_election(self, msg: Election) -> list[Outgoing]:
        """Forward an election, or announce the winner once it has gone round."""
        log.info(
            "Marcando server %s como desconectado porque me llega de election",
            msg.disconnected_leader_id,
        )
        self.disconnected_servers.append(msg.disconnected_leader_id)
        if self.id_leader == msg.disconnected_leader_id:
            self.has_leader_connection = False
        if not self.update_neighbor(self.actual_neighbor_id):
            return self._self_elected()

        if self.id in msg.server_ids:
            leader_id = max(msg.server_ids, default=0)
            log.info("Nuevo lider elegido: %s", leader_id)
            self.id_leader = leader_id
            announcement = NewLeader(
                id_sender=self.id, leader_id=leader_id, sequence_number=self.sequence_number
            )
            self.sequence_number += 1
            serialized = encode_message("new_leader", announcement)
            return self._send_to_neighbor(serialized, announcement.sequence_number)

        election = Election(
            disconnected_leader_id=msg.disconnected_leader_id,
            server_ids=[*msg.server_ids, self.id],
            sequence_number=self.sequence_number,
        )
        self.sequence_number += 1
        serialized = encode_message("election", election)
        return self._send_to_neighbor(serialized, election.sequence_number)

    def on_new_leader(self, msg: NewLeader) -> list[Outgoing]:
        """Adopt the announced leader and pass the announcement along the ring."""
        actions: list[Outgoing] = []
        self.id_leader = msg.leader_id
        if msg.leader_id == self.id and not self.im_leader:
            log.info("Soy el lider")
            self.im_leader = True
            actions.append(Outgoing(Outgoing.Kind.BECOME_LEADER))
        if msg.id_sender != self.id:
            if not self.update_neighbor(self.actual_neighbor_id):
                actions.extend(self._self_elected())
            else:
                serialized = encode_message("new_leader", msg)
                actions.extend(self._send_to_neighbor(serialized, msg.sequence_number))
        if msg.leader_id != self.id and not self.has_leader_connection:
            actions.append(Outgoing(Outgoing.Kind.CONNECT_TO_LEADER))
        return actions

    def on_ack(self, msg: NeighborAck) -> None:
        """Record an acknowledgement and mark its sender as connected."""
        self.disconnected_servers = [
            server_id for server_id in self.disconnected_servers if server_id != msg.id
        ]
        self.message_received_ack.add(msg.sequence_number)
        log.debug("Received %s ACK from id %s", msg.message, msg.id)

    def check_ack(
        self, neighbor_id: int, serialized_msg: str, sequence_number: int
    ) -> list[Outgoing]:
        """Resend to the next neighbour if ``sequence_number`` was never acknowledged."""
        if sequence_number in self.message_received_ack:
            self.received_neighbor_ack = False
            return []
        log.info("No ACK recibido, marcando vecino desconectado y reenviando")
        self.disconnected_servers.append(neighbor_id)
        if not self.update_neighbor(self.actual_neighbor_id):
            return self._self_elected()
        return self._send_to_neighbor(serialized_msg, sequence_number)

    def replica_connected(self, replica_id: int, socket: str) -> bool:
        """Record a replica that joined; return whether it was marked disconnected."""
        log.info("Nuevo servidor replica con ID %s", replica_id)
        was_disconnected = replica_id in self.disconnected_servers
        if was_disconnected:
            self.disconnected_servers = [
                server_id for server_id in self.disconnected_servers if server_id != replica_id
            ]
        self.udp_sockets_replicas[replica_id] = socket
        return was_disconnected