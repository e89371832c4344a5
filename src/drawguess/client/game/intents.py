"""
本地操作 -> 出站消息

发送前按角色校验：只有当前绘者能画/清屏，绘者不能猜词；游戏结束后房间内的所有
操作都被拦截。所有消息都是“发出即忘”，权威回显经由订阅话题返回。
每个意图都返回是否真的发出了消息，被拦截时只记 DEBUG 日志。
"""

from __future__ import annotations

import logging
import random
from typing import Optional

from pydantic import ValidationError

from drawguess.shared.constants import DEFAULT_BRUSH_SIZE, DEFAULT_COLOR, DEST_JOIN, ROOM_CODE_DIGITS
from drawguess.shared.protocols import ChatIntent, ClearEvent, JoinRequest, RoomConfig, StrokeEvent, WordChoice
from drawguess.client.drawing import CanvasSize, PixelSegment, encode_stroke
from drawguess.client.game.state import Phase, StateReconciler
from drawguess.client.router import ChannelRouter, Topics

logger = logging.getLogger(__name__)


def generate_room_code(rng: Optional[random.Random] = None) -> str:
    """生成 6 位数字房间号（首位不为 0）"""
    rng = rng or random
    low = 10 ** (ROOM_CODE_DIGITS - 1)
    return str(rng.randint(low, 10 ** ROOM_CODE_DIGITS - 1))


class IntentEmitter:
    def __init__(self, router: ChannelRouter, reconciler: StateReconciler, username: str = ""):
        self.router = router
        self.reconciler = reconciler
        self.username = username
        self.topics: Optional[Topics] = None

    # 房间
    def set_room(self, room_id: Optional[str]) -> None:
        self.topics = Topics(room_id) if room_id else None

    def join_room(self, room_id: str) -> bool:
        return self._send_join(room_id, "join")

    def create_room(self, room_id: Optional[str] = None, config: Optional[RoomConfig] = None) -> bool:
        return self._send_join(room_id or generate_room_code(), "create", config or RoomConfig())

    # 绘图
    def send_stroke(self, stroke: StrokeEvent) -> bool:
        if not self._drawer_allowed("draw"):
            return False
        return self.router.send(self.topics.send_draw, stroke.to_wire())

    def draw_segment(
        self,
        segment: PixelSegment,
        canvas_size: CanvasSize,
        color: str = DEFAULT_COLOR,
        line_width: float = DEFAULT_BRUSH_SIZE,
    ) -> bool:
        if not canvas_size.valid:
            logger.debug("画布尺寸为 0，忽略笔划")
            return False
        return self.send_stroke(encode_stroke(segment, canvas_size, color, line_width))

    def clear(self) -> bool:
        if not self._drawer_allowed("clear"):
            return False
        return self.router.send(self.topics.send_draw, ClearEvent().to_wire())

    # 聊天 / 猜词
    def chat(self, text: str) -> bool:
        if not self._room_allowed("chat"):
            return False
        if self.reconciler.state.is_drawer:
            logger.debug("绘者不能猜词，已拦截")
            return False
        content = (text or "").strip()
        if not content:
            return False
        intent = ChatIntent(sender=self.username, content=content)
        return self.router.send(self.topics.send_chat, intent.to_wire())

    # 游戏流程
    def start_game(self) -> bool:
        if not self._room_allowed("start"):
            return False
        if self.reconciler.state.running:
            logger.debug("游戏已在进行中，忽略开始请求")
            return False
        return self.router.send(self.topics.send_start, {})

    def choose_word(self, word: str) -> bool:
        if not self._room_allowed("choose_word"):
            return False
        state = self.reconciler.state
        if state.phase is not Phase.WORD_CHOICE:
            logger.debug("当前不在选词阶段，忽略选词")
            return False
        if word not in state.word_choices:
            logger.debug("词语不在候选列表中: %r", word)
            return False
        return self.router.send(self.topics.send_choose_word, WordChoice(word=word).to_wire())

    # 内部方法
    def _send_join(self, room_id: str, action: str, config: Optional[RoomConfig] = None) -> bool:
        try:
            request = JoinRequest(username=self.username, room_id=room_id, action=action, config=config)
        except ValidationError as exc:
            logger.warning("加入请求无效: %s", exc.errors(include_url=False))
            return False
        if not self.router.send(DEST_JOIN, request.to_wire()):
            return False
        logger.info("%s 房间 %s", "创建" if action == "create" else "加入", room_id)
        return True

    def _room_allowed(self, action: str) -> bool:
        if self.topics is None:
            logger.debug("未加入房间，拦截 %s", action)
            return False
        if not self.reconciler.state.accepts_input:
            logger.debug("游戏已结束，拦截 %s", action)
            return False
        return True

    def _drawer_allowed(self, action: str) -> bool:
        if not self._room_allowed(action):
            return False
        if not self.reconciler.state.is_drawer:
            logger.debug("非绘者，拦截 %s", action)
            return False
        return True


__all__ = ["IntentEmitter", "generate_room_code"]
