import asyncio

import pytest

from appsuite.server.connections import (
    HANDSHAKE,
    ClientSession,
    LeaderConnection,
    serve_connections,
)
from appsuite.server.messages import UpdateNetworkState, encode_message


class FakeWriter:
    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, payload):
        self.data += payload

    async def drain(self):
        pass

    def is_closing(self):
        return self.closed

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass

    def get_extra_info(self, name, default=None):
        return ("127.0.0.1", 5000) if name == "peername" else default


class RecordingServer:
    def __init__(self):
        self.connected = []
        self.messages = []
        self.pongs = []
        self.states = []
        self.queue = None

    def client_connected(self, session):
        self.connected.append(session)

    def handle_client_message(self, session, title, payload):
        self.messages.append((session, title, payload))
        if self.queue is not None:
            self.queue.put_nowait((title, payload))

    async def pong(self, session):
        self.pongs.append(session)
        session.send("pong-reply")

    def update_network_state(self, state):
        self.states.append(state)


def make_session(handshake_sent=False):
    server = RecordingServer()
    writer = FakeWriter()
    session = ClientSession(asyncio.StreamReader(), writer, server, handshake_sent)
    return session, server, writer


@pytest.mark.asyncio
async def test_first_line_gets_handshake():
    session, server, writer = make_session()
    await session.handle_line("hola")
    assert bytes(writer.data) == b"HANDSHAKE\n"
    assert server.messages == []
    assert session.handshake_sent is True


@pytest.mark.asyncio
async def test_message_after_handshake_is_dispatched():
    session, server, writer = make_session(handshake_sent=True)
    await session.handle_line(encode_message("login", {"name": "ana"}))
    assert server.messages == [(session, "login", {"name": "ana"})]
    assert bytes(writer.data) == b""


@pytest.mark.asyncio
async def test_ack_is_not_dispatched():
    session, server, writer = make_session(handshake_sent=True)
    await session.handle_line(encode_message("ACK", None))
    assert server.messages == []
    assert server.pongs == []


@pytest.mark.asyncio
async def test_ping_calls_pong():
    session, server, writer = make_session(handshake_sent=True)
    await session.handle_line(encode_message("ping", None))
    assert server.pongs == [session]
    assert bytes(writer.data) == b"pong-reply\n"


@pytest.mark.asyncio
async def test_invalid_json_is_ignored():
    session, server, _ = make_session(handshake_sent=True)
    await session.handle_line("not json at all")
    assert server.messages == []


def test_send_frames_lines_once():
    session, _, writer = make_session()
    assert session.send("x") is True
    assert session.send("y\n") is True
    assert bytes(writer.data) == b"x\ny\n"


def test_send_on_closing_writer_fails():
    session, _, writer = make_session()
    writer.closed = True
    assert session.send("x") is False
    assert bytes(writer.data) == b""


@pytest.mark.asyncio
async def test_run_processes_lines_and_closes():
    server = RecordingServer()
    writer = FakeWriter()
    reader = asyncio.StreamReader()
    reader.feed_data(b"hello\n" + encode_message("login", {"name": "b"}).encode() + b"\r\n")
    reader.feed_eof()
    session = ClientSession(reader, writer, server)
    await session.run()
    assert bytes(writer.data) == HANDSHAKE.encode() + b"\n"
    assert [(title, payload) for _, title, payload in server.messages] == [
        ("login", {"name": "b"})
    ]
    assert writer.closed is True


def make_leader(on_write_error=None):
    server = RecordingServer()
    writer = FakeWriter()
    connection = LeaderConnection(asyncio.StreamReader(), writer, server, on_write_error)
    return connection, server, writer


@pytest.mark.asyncio
async def test_leader_pong_updates_state():
    connection, server, _ = make_leader()
    before = connection.response_time
    snapshot = UpdateNetworkState(ids_count=3, customers={"ana": 1})
    state = await connection.handle_line(encode_message("pong", snapshot) + "\n")
    assert state == snapshot
    assert server.states == [snapshot]
    assert connection.response_time >= before


@pytest.mark.asyncio
async def test_leader_ignores_other_titles():
    connection, server, _ = make_leader()
    assert await connection.handle_line(encode_message("election", {})) is None
    assert server.states == []


@pytest.mark.asyncio
async def test_leader_ignores_non_json_and_missing_payload():
    connection, server, _ = make_leader()
    assert await connection.handle_line("HANDSHAKE") is None
    assert await connection.handle_line('{"title":"pong"}') is None
    assert server.states == []


@pytest.mark.asyncio
async def test_leader_send_and_failure():
    failures = []
    connection, _, writer = make_leader(lambda: failures.append(True))
    assert connection.send(encode_message("ping", None)) is True
    assert bytes(writer.data) == b'{"title":"ping","payload":null}\n'
    writer.closed = True
    assert connection.send("again") is False
    assert failures == [True]
    assert connection.connected is False


@pytest.mark.asyncio
async def test_serve_connections_handshake_and_dispatch():
    server = RecordingServer()
    server.queue = asyncio.Queue()
    listener = await serve_connections("127.0.0.1", 0, server, False)
    port = listener.sockets[0].getsockname()[1]
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"hello\n")
        await writer.drain()
        assert await asyncio.wait_for(reader.readline(), 5) == b"HANDSHAKE\n"
        writer.write(encode_message("login", {"name": "ana"}).encode() + b"\n")
        await writer.drain()
        title, payload = await asyncio.wait_for(server.queue.get(), 5)
        assert (title, payload) == ("login", {"name": "ana"})
        assert len(server.connected) == 1
        writer.close()
        await writer.wait_closed()
    finally:
        listener.close()
        await listener.wait_closed()


@pytest.mark.asyncio
async def test_serve_connections_without_handshake_answers_ping():
    server = RecordingServer()
    listener = await serve_connections("127.0.0.1", 0, server, True)
    port = listener.sockets[0].getsockname()[1]
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(encode_message("ping", None).encode() + b"\n")
        await writer.drain()
        assert await asyncio.wait_for(reader.readline(), 5) == b"pong-reply\n"
        assert len(server.pongs) == 1
        writer.close()
        await writer.wait_closed()
    finally:
        listener.close()
        await listener.wait_closed()