"""
频道路由：在单一连接上复用多个命名话题与一个会话私有队列。

- subscribe(topic, handler) 返回可释放的 Subscription
- 同一话题内按服务器发送顺序投递，跨话题不保证顺序
- 断线重连后先按原话题集合重新订阅，再执行 on_resubscribed 钩子（状态补拉）
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Callable, Dict, List, Optional

from drawguess.shared.constants import (
    DEST_CHAT,
    DEST_CHOOSE_WORD,
    DEST_DRAW,
    DEST_START,
    MSG_MESSAGE,
    MSG_SEND,
    MSG_SUBSCRIBE,
    MSG_UNSUBSCRIBE,
    PATH_ROOM_STATE,
    QUEUE_DRAW,
    QUEUE_ERRORS,
    TOPIC_CHAT,
    TOPIC_DRAW,
    TOPIC_STATE,
    TOPIC_TIME,
)
from drawguess.shared.protocols import Message
from drawguess.client.network import ConnectionEvent, ConnectionManager, ConnectionState

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class Topics:
    """按房间号生成话题与目的地名称"""

    def __init__(self, room_id: str):
        if not room_id:
            raise ValueError("room_id is required")
        self.room_id = str(room_id)

    @property
    def draw(self) -> str:
        return TOPIC_DRAW.format(room_id=self.room_id)

    @property
    def chat(self) -> str:
        return TOPIC_CHAT.format(room_id=self.room_id)

    @property
    def state(self) -> str:
        return TOPIC_STATE.format(room_id=self.room_id)

    @property
    def timer(self) -> str:
        return TOPIC_TIME.format(room_id=self.room_id)

    user_draw = QUEUE_DRAW
    user_errors = QUEUE_ERRORS

    @property
    def send_draw(self) -> str:
        return DEST_DRAW.format(room_id=self.room_id)

    @property
    def send_chat(self) -> str:
        return DEST_CHAT.format(room_id=self.room_id)

    @property
    def send_start(self) -> str:
        return DEST_START.format(room_id=self.room_id)

    @property
    def send_choose_word(self) -> str:
        return DEST_CHOOSE_WORD.format(room_id=self.room_id)

    @property
    def state_path(self) -> str:
        return PATH_ROOM_STATE.format(room_id=self.room_id)


class Subscription:
    """一个活动订阅（话题 + 处理器），unsubscribe() 幂等"""

    def __init__(self, router: "ChannelRouter", topic: str, handler: Handler):
        self.router = router
        self.topic = topic
        self.handler = handler
        self.sub_id: Optional[str] = None
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.router._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return f"<Subscription {self.topic} id={self.sub_id} active={self.active}>"


class ChannelRouter:
    """订阅表与消息分发；所有出站写入都经由 ConnectionManager"""

    def __init__(self, connection: ConnectionManager):
        self.connection = connection
        self._subs: Dict[str, Subscription] = {}
        self._ids = itertools.count(1)
        self._resubscribe_hooks: List[Callable[[], None]] = []
        # 断开期间保留订阅表，重连后据此重新订阅
        self._needs_resubscribe = False
        connection.on_frame(self._handle_frame)
        connection.add_listener(self._on_connection_event)

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subs.values())

    @property
    def topics(self) -> List[str]:
        return [s.topic for s in self._subs.values()]

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        sub = Subscription(self, topic, handler)
        self._register(sub)
        return sub

    def unsubscribe_all(self) -> None:
        """离开房间或重连重订阅前调用，清理所有活动订阅"""
        for sub in list(self._subs.values()):
            self._remove(sub)

    def on_resubscribed(self, hook: Callable[[], None]) -> None:
        self._resubscribe_hooks.append(hook)

    def send(self, destination: str, body: Any) -> bool:
        return self.connection.send(Message(MSG_SEND, {"destination": destination, "body": body}))

    def request(self, path: str, callback: Callable[[Any], None]) -> Optional[str]:
        return self.connection.request(path, callback)

    # 内部方法
    def _register(self, sub: Subscription) -> None:
        sub.sub_id = f"sub-{next(self._ids)}"
        self._subs[sub.sub_id] = sub
        if self.connection.connected:
            self.connection.send(Message(MSG_SUBSCRIBE, {"id": sub.sub_id, "destination": sub.topic}))
        logger.debug("订阅 %s (%s)", sub.topic, sub.sub_id)

    def _remove(self, sub: Subscription) -> None:
        sub.active = False
        self._subs.pop(sub.sub_id, None)
        if self.connection.connected:
            self.connection.send(Message(MSG_UNSUBSCRIBE, {"id": sub.sub_id}))
        logger.debug("取消订阅 %s (%s)", sub.topic, sub.sub_id)

    def _on_connection_event(self, event: ConnectionEvent) -> None:
        if event.state in (ConnectionState.RECONNECTING, ConnectionState.FAILED, ConnectionState.DISCONNECTED):
            if self._subs:
                self._needs_resubscribe = True
            return
        if event.state is not ConnectionState.CONNECTED:
            return
        if self._needs_resubscribe or self._subs:
            self._resubscribe()

    def _resubscribe(self) -> None:
        # 旧连接上的订阅号已失效：换新号按原话题集合重新订阅
        old = list(self._subs.values())
        self._subs.clear()
        for sub in old:
            if sub.active:
                self._register(sub)
        self._needs_resubscribe = False
        logger.info("重连后已重新订阅 %d 个话题", len(self._subs))
        for hook in list(self._resubscribe_hooks):
            try:
                hook()
            except Exception:
                logger.exception("重订阅钩子异常")

    def _handle_frame(self, msg: Message) -> None:
        if msg.type != MSG_MESSAGE:
            logger.debug("忽略未知帧: type=%s", msg.type)
            return
        destination = msg.data.get("destination")
        body = msg.data.get("body")
        sub_id = msg.data.get("subscription")
        if sub_id is not None and sub_id in self._subs:
            targets = [self._subs[sub_id]]
        else:
            targets = [s for s in self._subs.values() if s.topic == destination]
        if not targets:
            logger.debug("无订阅者，丢弃消息: %s", destination)
            return
        for sub in targets:
            if not sub.active:
                continue
            try:
                sub.handler(body)
            except Exception:
                logger.exception("话题处理器异常: %s", sub.topic)


__all__ = ["Topics", "Subscription", "ChannelRouter"]
