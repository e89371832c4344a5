"""
Pytest configuration and shared fixtures for the Draw and Guess sync client.
"""

import os
import sys

import pytest

# Add src to path for testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from drawguess.client.drawing import CanvasSize  # noqa: E402
from drawguess.client.game.session import GameSession  # noqa: E402
from drawguess.client.network import TRANSPORT_CLOSED, ConnectionManager  # noqa: E402
from drawguess.client.timers import Scheduler  # noqa: E402
from drawguess.shared.constants import MSG_CONNECTED, MSG_MESSAGE, MSG_RESPONSE  # noqa: E402
from drawguess.shared.protocols import Message  # noqa: E402

ENDPOINT = "tcp://127.0.0.1:5555"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTransport:
    """In-memory stand-in for LineTransport: records sent frames, replays queued lines."""

    def __init__(self, host, port, refuse=False):
        self.host = host
        self.port = port
        self.refuse = refuse
        self.opened = False
        self.closed = False
        self.sent = []
        self.inbox = []

    def open(self):
        if self.refuse:
            raise ConnectionRefusedError("connection refused")
        self.opened = True

    def send_line(self, text):
        if self.closed:
            raise OSError("transport is closed")
        self.sent.append(Message.from_json(text))

    def poll(self):
        items, self.inbox = self.inbox, []
        return items

    def close(self):
        self.closed = True

    # helpers for tests
    def feed(self, msg_type, data=None):
        self.inbox.append(Message(msg_type, data or {}).to_json())

    def feed_raw(self, line):
        self.inbox.append(line)

    def feed_message(self, destination, body):
        self.feed(MSG_MESSAGE, {"destination": destination, "body": body})

    def reply(self, request, body, status=200):
        self.feed(MSG_RESPONSE, {"request_id": request.data["request_id"], "status": status, "body": body})

    def drop(self):
        self.inbox.append(TRANSPORT_CLOSED)

    def frames(self, msg_type):
        return [m for m in self.sent if m.type == msg_type]


class FakeNetwork:
    """Transport factory that records every transport it creates."""

    def __init__(self):
        self.transports = []
        self.refuse_next = 0
        self.refuse_all = False

    def __call__(self, host, port):
        refuse = self.refuse_all or self.refuse_next > 0
        if self.refuse_next > 0:
            self.refuse_next -= 1
        transport = FakeTransport(host, port, refuse=refuse)
        self.transports.append(transport)
        return transport

    @property
    def last(self):
        return self.transports[-1]


def complete_handshake(pump, network, session_id="S-me"):
    """Answer the pending connect frame on the latest transport and pump once."""
    network.last.feed(MSG_CONNECTED, {"session_id": session_id})
    pump()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return Scheduler(clock=clock)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def manager(scheduler, network):
    return ConnectionManager(scheduler, transport_factory=network, username="alice")


@pytest.fixture
def connected_manager(manager, network):
    manager.connect(ENDPOINT)
    complete_handshake(manager.pump, network)
    return manager


@pytest.fixture
def session(scheduler, network):
    return GameSession("alice", ENDPOINT, scheduler=scheduler, transport_factory=network, canvas_size=CanvasSize(500, 400))


@pytest.fixture
def connected_session(session, network):
    session.connect()
    complete_handshake(session.pump, network)
    return session


@pytest.fixture
def sample_snapshot_payload():
    """A running game as broadcast by the server; S1 is drawing."""
    return {
        "roomId": "482913",
        "players": [
            {"sessionId": "S1", "username": "bob", "score": 120},
            {"sessionId": "S-me", "username": "alice", "score": 80},
            {"sessionId": "S3", "username": "carol", "score": 200},
        ],
        "currentRound": 1,
        "maxRounds": 3,
        "currentTurn": 1,
        "maxTurns": 3,
        "currentDrawerSessionId": "S1",
        "hintWord": "_ _ _ _",
        "isGameRunning": True,
        "gameOver": False,
        "wordChosen": True,
        "roundTime": 60,
    }


@pytest.fixture
def lobby_snapshot_payload():
    return {
        "roomId": "482913",
        "players": [{"sessionId": "S-me", "username": "alice", "score": 0}],
        "currentRound": 0,
        "maxRounds": 3,
        "isGameRunning": False,
        "gameOver": False,
    }


@pytest.fixture
def handshake(network):
    """Returns a helper completing the handshake on the latest transport."""

    def _handshake(pump, session_id="S-me"):
        complete_handshake(pump, network, session_id)

    return _handshake
