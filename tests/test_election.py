import pytest

from appsuite.server.election import ElectionState, Outgoing, get_neighbor_id
from appsuite.server.messages import Election, NeighborAck, NewLeader, decode_message


def address(server_id):
    return f"127.0.0.1:{7000 + server_id}"


def kinds(actions):
    return [action.kind for action in actions]


def make_state(**kwargs):
    return ElectionState(address_of=address, **kwargs)


def test_neighbor_wraps_around_ring():
    assert get_neighbor_id(5) == 1
    assert get_neighbor_id(2) == 3


@pytest.mark.parametrize("server_id", [1, 2, 3, 4, 5])
def test_neighbor_cycle_visits_all(server_id):
    seen = {server_id}
    current = server_id
    for _ in range(4):
        current = get_neighbor_id(current)
        seen.add(current)
    assert get_neighbor_id(current) == server_id
    assert seen == {1, 2, 3, 4, 5}


def test_update_neighbor_keeps_connected_neighbor():
    state = make_state(id=2, actual_neighbor_id=3)
    assert state.update_neighbor(3) is True
    assert state.actual_neighbor_id == 3


def test_update_neighbor_skips_disconnected_and_self():
    state = make_state(id=2, actual_neighbor_id=3, disconnected_servers=[3, 4])
    assert state.update_neighbor(3) is True
    assert state.actual_neighbor_id not in (2, 3, 4)


def test_update_neighbor_fails_when_alone():
    state = make_state(id=1, actual_neighbor_id=2, disconnected_servers=[2, 3, 4, 5])
    assert state.update_neighbor(2) is False


def test_start_election_sends_to_neighbor():
    state = make_state(id=2, id_leader=1, actual_neighbor_id=3)
    actions = state.start_election()
    assert kinds(actions) == [Outgoing.Kind.SEND_UDP, Outgoing.Kind.WAIT_ACK]
    assert state.disconnected_servers == [1]
    send, wait = actions
    assert send.dst == address(3)
    title, payload = decode_message(send.message)
    assert title == "election"
    election = Election.from_dict(payload)
    assert election.server_ids == [2]
    assert election.disconnected_leader_id == 1
    assert wait.neighbor_id == 3
    assert wait.message == send.message
    assert wait.sequence_number == election.sequence_number == 0
    assert state.sequence_number == 2


def test_start_election_alone_elects_self():
    state = make_state(id=1, id_leader=2, actual_neighbor_id=2, disconnected_servers=[3, 4, 5])
    actions = state.start_election()
    assert kinds(actions) == [Outgoing.Kind.NEW_LEADER]
    assert actions[0].new_leader == NewLeader(id_sender=1, leader_id=1, sequence_number=0)
    assert state.sequence_number == 1


def test_new_leader_from_self_election_makes_leader():
    state = make_state(id=1, id_leader=2, actual_neighbor_id=2, disconnected_servers=[3, 4, 5])
    announcement = state.start_election()[0].new_leader
    actions = state.on_new_leader(announcement)
    assert kinds(actions) == [Outgoing.Kind.BECOME_LEADER]
    assert state.im_leader is True
    assert state.id_leader == 1


def test_election_forwarded_with_own_id():
    state = make_state(id=3, id_leader=1, actual_neighbor_id=4, has_leader_connection=True)
    msg = Election(disconnected_leader_id=1, server_ids=[2], sequence_number=7)
    actions = state.on_election(msg)
    assert kinds(actions) == [Outgoing.Kind.SEND_UDP, Outgoing.Kind.WAIT_ACK]
    assert state.has_leader_connection is False
    assert 1 in state.disconnected_servers
    title, payload = decode_message(actions[0].message)
    assert title == "election"
    forwarded = Election.from_dict(payload)
    assert forwarded.server_ids == [2, 3]
    assert forwarded.disconnected_leader_id == 1
    assert actions[0].dst == address(4)


def test_election_round_trip_announces_highest_id():
    state = make_state(id=2, id_leader=1, actual_neighbor_id=3)
    msg = Election(disconnected_leader_id=1, server_ids=[2, 4, 3], sequence_number=0)
    actions = state.on_election(msg)
    assert state.id_leader == 4
    title, payload = decode_message(actions[0].message)
    assert title == "new_leader"
    announcement = NewLeader.from_dict(payload)
    assert announcement.leader_id == 4
    assert announcement.id_sender == 2
    assert actions[1].sequence_number == announcement.sequence_number


def test_new_leader_forwarded_and_connects():
    state = make_state(id=2, id_leader=1, actual_neighbor_id=3)
    msg = NewLeader(id_sender=4, leader_id=4, sequence_number=9)
    actions = state.on_new_leader(msg)
    assert kinds(actions) == [
        Outgoing.Kind.SEND_UDP,
        Outgoing.Kind.WAIT_ACK,
        Outgoing.Kind.CONNECT_TO_LEADER,
    ]
    assert state.id_leader == 4
    assert state.im_leader is False
    assert NewLeader.from_dict(decode_message(actions[0].message)[1]) == msg
    assert actions[1].sequence_number == 9


def test_new_leader_from_self_not_forwarded():
    state = make_state(id=2, actual_neighbor_id=3, has_leader_connection=True)
    actions = state.on_new_leader(NewLeader(id_sender=2, leader_id=4, sequence_number=1))
    assert actions == []
    assert state.id_leader == 4


def test_check_ack_after_ack_does_nothing():
    state = make_state(id=2, actual_neighbor_id=3, disconnected_servers=[3])
    state.on_ack(NeighborAck(id=3, message="m", sequence_number=5))
    assert state.disconnected_servers == []
    assert state.check_ack(3, "m", 5) == []
    assert state.received_neighbor_ack is False


def test_check_ack_without_ack_resends_to_next():
    state = make_state(id=2, actual_neighbor_id=3)
    actions = state.check_ack(3, "payload", 5)
    assert 3 in state.disconnected_servers
    assert kinds(actions) == [Outgoing.Kind.SEND_UDP, Outgoing.Kind.WAIT_ACK]
    assert actions[0].message == "payload"
    assert actions[0].dst == address(state.actual_neighbor_id)
    assert actions[1].neighbor_id == state.actual_neighbor_id
    assert state.actual_neighbor_id not in (2, 3)
    assert actions[1].sequence_number == 5


def test_check_ack_alone_elects_self():
    state = make_state(id=2, actual_neighbor_id=3, disconnected_servers=[1, 4, 5])
    actions = state.check_ack(3, "payload", 5)
    assert kinds(actions) == [Outgoing.Kind.NEW_LEADER]
    assert actions[0].new_leader.leader_id == 2


def test_replica_connected_clears_disconnected():
    state = make_state(id=1, disconnected_servers=[3, 4, 3])
    assert state.replica_connected(3, "127.0.0.1:1") is True
    assert state.disconnected_servers == [4]
    assert state.udp_sockets_replicas == {3: "127.0.0.1:1"}
    assert state.replica_connected(5, "127.0.0.1:2") is False
    assert state.udp_sockets_replicas[5] == "127.0.0.1:2"