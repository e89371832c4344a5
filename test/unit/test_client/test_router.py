"""
Tests for topic subscription and message dispatch.
"""

import logging

import pytest

from drawguess.client.router import ChannelRouter, Topics
from drawguess.shared.constants import MSG_SEND, MSG_SUBSCRIBE, MSG_UNSUBSCRIBE

ENDPOINT = "tcp://127.0.0.1:5555"


@pytest.fixture
def router(connected_manager):
    return ChannelRouter(connected_manager)


def test_topics_for_room():
    topics = Topics("482913")
    assert topics.draw == "/topic/room/482913/draw"
    assert topics.chat == "/topic/room/482913/chat"
    assert topics.state == "/topic/room/482913/state"
    assert topics.timer == "/topic/room/482913/time"
    assert topics.user_draw == "/user/queue/draw"
    assert topics.send_choose_word == "/app/chooseWord/482913"
    assert topics.state_path == "/api/room/482913/state"
    with pytest.raises(ValueError):
        Topics("")


def test_subscribe_sends_frame_and_dispatches(router, network, connected_manager):
    received = []
    sub = router.subscribe("/topic/a", received.append)
    frame = network.last.frames(MSG_SUBSCRIBE)[-1]
    assert frame.data == {"id": sub.sub_id, "destination": "/topic/a"}

    network.last.feed_message("/topic/a", {"n": 1})
    network.last.feed_message("/topic/b", {"n": 2})
    network.last.feed_message("/topic/a", {"n": 3})
    connected_manager.pump()
    assert received == [{"n": 1}, {"n": 3}]


def test_dispatch_by_subscription_id(router, network, connected_manager):
    first, second = [], []
    sub = router.subscribe("/topic/a", first.append)
    router.subscribe("/topic/a", second.append)
    network.last.feed("message", {"subscription": sub.sub_id, "destination": "/topic/a", "body": 1})
    connected_manager.pump()
    assert first == [1]
    assert second == []


def test_unsubscribe_is_idempotent(router, network, connected_manager):
    received = []
    sub = router.subscribe("/topic/a", received.append)
    sub.unsubscribe()
    sub.unsubscribe()
    assert len(network.last.frames(MSG_UNSUBSCRIBE)) == 1
    assert router.topics == []
    network.last.feed_message("/topic/a", 1)
    connected_manager.pump()
    assert received == []


def test_subscription_as_context_manager(router):
    with router.subscribe("/topic/a", lambda body: None) as sub:
        assert sub.active
    assert not sub.active


def test_handler_error_does_not_stop_dispatch(router, network, connected_manager, caplog):
    received = []

    def broken(body):
        raise KeyError("bad")

    router.subscribe("/topic/a", broken)
    router.subscribe("/topic/a", received.append)
    network.last.feed_message("/topic/a", "x")
    with caplog.at_level(logging.ERROR):
        connected_manager.pump()
    assert received == ["x"]
    assert "/topic/a" in caplog.text


def test_send_wraps_destination_and_body(router, network):
    assert router.send("/app/chat/1", {"content": "hi"})
    frame = network.last.frames(MSG_SEND)[-1]
    assert frame.data == {"destination": "/app/chat/1", "body": {"content": "hi"}}


def test_subscriptions_registered_before_connect_are_sent_on_connect(manager, network, handshake):
    router = ChannelRouter(manager)
    router.subscribe("/topic/a", lambda body: None)
    manager.connect(ENDPOINT)
    assert network.last.frames(MSG_SUBSCRIBE) == []
    handshake(manager.pump)
    assert [f.data["destination"] for f in network.last.frames(MSG_SUBSCRIBE)] == ["/topic/a"]


def test_resubscribe_after_reconnect_runs_hooks_last(router, network, connected_manager, clock, handshake):
    router.subscribe("/topic/a", lambda body: None)
    router.subscribe("/topic/b", lambda body: None)
    old_ids = [s.sub_id for s in router.subscriptions]

    seen_at_hook = []
    router.on_resubscribed(lambda: seen_at_hook.append(len(network.last.frames(MSG_SUBSCRIBE))))

    network.last.drop()
    connected_manager.pump()
    clock.advance(1.0)
    connected_manager.pump()
    handshake(connected_manager.pump, "S-again")

    fresh = network.last.frames(MSG_SUBSCRIBE)
    assert sorted(f.data["destination"] for f in fresh) == ["/topic/a", "/topic/b"]
    assert seen_at_hook == [2]
    assert not set(old_ids) & {s.sub_id for s in router.subscriptions}


def test_unsubscribe_all(router, network):
    router.subscribe("/topic/a", lambda body: None)
    router.subscribe("/topic/b", lambda body: None)
    router.unsubscribe_all()
    assert router.subscriptions == []
    assert len(network.last.frames(MSG_UNSUBSCRIBE)) == 2
