"""
Tests for the connection state machine: handshake, heartbeat, backoff and keep-alive.
"""

import logging

import pytest

from drawguess.client.network import ConnectionManager, ConnectionState, LineTransport, backoff_delay, parse_endpoint
from drawguess.shared.constants import MSG_CONNECT, MSG_MESSAGE, MSG_PING, MSG_PONG, MSG_REQUEST
from drawguess.shared.errors import ConnectionLostError, HandshakeError, TransportError
from drawguess.shared.protocols import Message

ENDPOINT = "tcp://127.0.0.1:5555"


def record_events(manager):
    events = []
    manager.add_listener(events.append)
    return events


def test_parse_endpoint():
    assert parse_endpoint("tcp://example.org:6000") == ("example.org", 6000)


@pytest.mark.parametrize("endpoint", ["", "example.org:6000", "ws://example.org:6000", "tcp://example.org", "tcp://:80"])
def test_parse_endpoint_rejects(endpoint):
    with pytest.raises(ValueError):
        parse_endpoint(endpoint)


def test_backoff_schedule():
    assert [backoff_delay(a) for a in range(6)] == [1000, 2000, 4000, 8000, 15000, 15000]
    with pytest.raises(ValueError):
        backoff_delay(-1)


def test_handshake_assigns_session(manager, network, handshake):
    events = record_events(manager)
    ready = []
    manager.connect(ENDPOINT, on_ready=ready.append)
    assert manager.state is ConnectionState.CONNECTING
    connect = network.last.frames(MSG_CONNECT)
    assert len(connect) == 1
    assert connect[0].data["username"] == "alice"

    handshake(manager.pump, "S-42")
    assert manager.connected
    assert manager.session_id == "S-42"
    assert ready == ["S-42"]
    assert [e.state for e in events] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert events[-1].session_id == "S-42"


def test_duplicate_handshake_is_ignored(connected_manager, network, handshake):
    handshake(connected_manager.pump, "S-other")
    assert connected_manager.session_id == "S-me"


def test_handshake_timeout_schedules_retry(manager, network, scheduler, clock):
    errors = []
    manager.connect(ENDPOINT, on_error=errors.append)
    clock.advance(5.0)
    manager.pump()
    assert manager.state is ConnectionState.RECONNECTING
    assert network.last.closed
    assert isinstance(errors[0], HandshakeError)
    assert scheduler.next_deadline() - clock() == pytest.approx(1.0)


def test_handshake_without_session_id_fails(manager, network):
    manager.connect(ENDPOINT)
    network.last.feed("connected", {})
    manager.pump()
    assert manager.state is ConnectionState.RECONNECTING
    assert manager.session_id is None


def test_backoff_sequence_then_fatal(manager, network, scheduler, clock):
    network.refuse_all = True
    events = record_events(manager)
    errors = []
    manager.connect(ENDPOINT, on_error=errors.append)

    delays = []
    while manager.state is ConnectionState.RECONNECTING:
        delay = scheduler.next_deadline() - clock()
        delays.append(round(delay * 1000))
        clock.advance(delay)
        manager.pump()

    assert delays == [1000, 2000, 4000, 8000, 15000]
    assert manager.state is ConnectionState.FAILED
    assert len(network.transports) == 6
    assert events[-1].fatal
    assert isinstance(events[-1].error, ConnectionLostError)
    assert events[-1].error.attempts == 5
    # one report per attempt; the final attempt only reports the fatal error
    assert len(errors) == 6
    assert isinstance(errors[-1], ConnectionLostError)
    assert not any(isinstance(e, ConnectionLostError) for e in errors[:-1])

    # no further retry after the fatal notice
    clock.advance(120)
    manager.pump()
    assert len(network.transports) == 6


def test_heartbeat_sends_ping(connected_manager, network, clock):
    clock.advance(20)
    connected_manager.pump()
    pings = network.last.frames(MSG_PING)
    assert len(pings) == 1
    assert pings[0].data["ts"] == clock()


def test_any_inbound_frame_keeps_connection_alive(connected_manager, network, clock):
    clock.advance(20)
    connected_manager.pump()
    network.last.feed(MSG_PONG, {})
    connected_manager.pump()
    clock.advance(20)
    connected_manager.pump()
    assert connected_manager.connected
    assert len(network.last.frames(MSG_PING)) == 2


def test_heartbeat_timeout_drops_and_reconnects(connected_manager, network, scheduler, clock, handshake):
    first = network.last
    clock.advance(20)
    connected_manager.pump()
    clock.advance(20)
    connected_manager.pump()
    assert connected_manager.state is ConnectionState.RECONNECTING
    assert first.closed
    assert scheduler.next_deadline() - clock() == pytest.approx(1.0)

    clock.advance(1.0)
    connected_manager.pump()
    assert len(network.transports) == 2
    handshake(connected_manager.pump, "S-new")
    assert connected_manager.connected
    assert connected_manager.session_id == "S-new"
    assert connected_manager.attempt == 0


def test_peer_close_triggers_reconnect(connected_manager, network):
    network.last.drop()
    connected_manager.pump()
    assert connected_manager.state is ConnectionState.RECONNECTING


def test_server_ping_is_answered(connected_manager, network):
    network.last.feed(MSG_PING, {"ts": 5})
    connected_manager.pump()
    assert network.last.frames(MSG_PONG)[-1].data == {"ts": 5}


def test_malformed_frame_is_dropped(connected_manager, network, caplog):
    network.last.feed_raw("garbage{")
    with caplog.at_level(logging.WARNING):
        connected_manager.pump()
    assert connected_manager.connected
    assert "丢弃" in caplog.text


def test_frames_reach_handlers(connected_manager, network):
    frames = []
    connected_manager.on_frame(frames.append)
    network.last.feed_message("/topic/x", {"a": 1})
    connected_manager.pump()
    assert len(frames) == 1
    assert frames[0].type == MSG_MESSAGE


def test_request_response(connected_manager, network):
    results = []
    request_id = connected_manager.request("/api/thing", results.append)
    request = network.last.frames(MSG_REQUEST)[-1]
    assert request.data["request_id"] == request_id
    assert request.data["path"] == "/api/thing"
    network.last.reply(request, {"ok": True})
    connected_manager.pump()
    assert results == [{"ok": True}]


def test_request_error_status_yields_none(connected_manager, network):
    results = []
    connected_manager.request("/api/thing", results.append)
    network.last.reply(network.last.frames(MSG_REQUEST)[-1], {"error": "nope"}, status=404)
    connected_manager.pump()
    assert results == [None]


def test_request_when_disconnected(manager):
    results = []
    assert manager.request("/api/thing", results.append) is None
    assert results == [None]


def test_pending_requests_fail_on_drop(connected_manager, network):
    results = []
    connected_manager.request("/api/thing", results.append)
    network.last.drop()
    connected_manager.pump()
    assert results == [None]


def test_send_when_disconnected_returns_false(manager):
    assert manager.send(Message("send", {})) is False


def test_disconnect_cancels_pending_retry(manager, network, clock):
    network.refuse_next = 1
    manager.connect(ENDPOINT)
    assert manager.state is ConnectionState.RECONNECTING
    manager.disconnect()
    assert manager.state is ConnectionState.DISCONNECTED
    clock.advance(30)
    manager.pump()
    assert len(network.transports) == 1


def test_manual_reconnect_supersedes_backoff(manager, network, clock, handshake):
    network.refuse_next = 1
    manager.connect(ENDPOINT)
    manager.reconnect()
    assert len(network.transports) == 2
    handshake(manager.pump)
    assert manager.connected
    clock.advance(30)
    manager.pump()
    assert len(network.transports) == 2


def test_reconnect_requires_prior_connect(manager):
    with pytest.raises(RuntimeError):
        manager.reconnect()


def test_keepalive_detects_dead_connection(scheduler, network, clock, handshake):
    manager = ConnectionManager(
        scheduler, transport_factory=network, username="alice", heartbeat_interval=1000, keepalive_interval=60
    )
    manager.connect(ENDPOINT)
    handshake(manager.pump)
    assert manager.keepalive.running

    clock.advance(60)
    manager.pump()
    probe = network.last.frames(MSG_REQUEST)[-1]
    assert probe.data["path"] == "/ping"

    clock.advance(60)
    manager.pump()
    assert manager.state is ConnectionState.RECONNECTING
    assert not manager.keepalive.running


def test_keepalive_answered_probe_keeps_connection(scheduler, network, clock, handshake):
    manager = ConnectionManager(
        scheduler, transport_factory=network, username="alice", heartbeat_interval=1000, keepalive_interval=60
    )
    manager.connect(ENDPOINT)
    handshake(manager.pump)
    for _ in range(3):
        clock.advance(60)
        manager.pump()
        network.last.reply(network.last.frames(MSG_REQUEST)[-1], "pong")
        manager.pump()
    assert manager.connected
    assert len(network.last.frames(MSG_REQUEST)) == 3


def test_keepalive_stops_on_disconnect(connected_manager):
    assert connected_manager.keepalive.running
    connected_manager.disconnect()
    assert not connected_manager.keepalive.running
    assert connected_manager.session_id is None


def test_transport_error_hierarchy():
    assert issubclass(HandshakeError, TransportError)
    assert issubclass(ConnectionLostError, TransportError)


class RecordingSocket:
    """Records the bytes handed to sendall()."""

    def __init__(self):
        self.payloads = []

    def sendall(self, data):
        self.payloads.append(data)


class RacingTransport(LineTransport):
    """The socket disappears right after the first read, as when the reader thread closes it."""

    def __init__(self, sock):
        super().__init__("127.0.0.1", 5555)
        self._sock = sock

    @property
    def sock(self):
        sock, self._sock = self._sock, None
        return sock

    @sock.setter
    def sock(self, value):
        self._sock = value


def test_send_line_uses_a_single_socket_read():
    sock = RecordingSocket()
    transport = RacingTransport(sock)
    transport.send_line('{"type": "ping"}')
    assert sock.payloads == [b'{"type": "ping"}\n']


def test_send_line_on_closed_transport_raises_oserror():
    transport = LineTransport("127.0.0.1", 5555)
    with pytest.raises(OSError):
        transport.send_line("{}")
