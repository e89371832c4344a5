"""
客户端游戏状态调和

把服务器广播的完整状态快照与带外计时消息合并成一个一致的只读视图：
- 阶段迁移（大厅 -> 选词 -> 作画 -> 回合结束 -> 下一回合/游戏结束）完全由快照驱动
- 计时消息只覆盖倒计时字段；本地可以乐观地每秒递减，但总会被权威计时覆盖
- 兜底拉取的结果不能回退更新的本地状态（最高序号优先）
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from drawguess.shared.constants import CHAT_CAPACITY, DEFAULT_HINT, DEFAULT_ROUND_TIME
from drawguess.shared.protocols import ChatEntry, GameStateSnapshot, Player

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    LOBBY = "lobby"
    WORD_CHOICE = "word_choice"
    DRAWING = "drawing"
    ROUND_END = "round_end"
    GAME_OVER = "game_over"


@dataclass(frozen=True)
class ReconciledState:
    """最新快照 + 最近一次计时覆盖后的只读视图"""

    snapshot: Optional[GameStateSnapshot]
    timer: int
    phase: Phase
    my_session_id: Optional[str]
    seq: int

    @property
    def room_id(self) -> Optional[str]:
        return self.snapshot.room_id if self.snapshot else None

    @property
    def drawer_session_id(self) -> Optional[str]:
        return self.snapshot.current_drawer_session_id if self.snapshot else None

    @property
    def is_drawer(self) -> bool:
        return self.my_session_id is not None and self.drawer_session_id == self.my_session_id

    @property
    def visible_word(self) -> str:
        """绘者看到完整词语，其他人看到遮罩提示"""
        if self.snapshot is None:
            return DEFAULT_HINT
        if self.is_drawer:
            return self.snapshot.current_word or "LOADING..."
        return self.snapshot.hint_word or DEFAULT_HINT

    @property
    def choosing_word(self) -> bool:
        return self.phase is Phase.WORD_CHOICE

    @property
    def word_choices(self) -> List[str]:
        if not self.choosing_word or self.snapshot is None:
            return []
        return list(self.snapshot.word_choices)

    @property
    def running(self) -> bool:
        return bool(self.snapshot and self.snapshot.game_running)

    @property
    def game_over(self) -> bool:
        return self.phase is Phase.GAME_OVER

    @property
    def accepts_input(self) -> bool:
        return not self.game_over

    @property
    def players(self) -> List[Player]:
        return list(self.snapshot.players) if self.snapshot else []

    def leaderboard(self) -> List[Player]:
        return sorted(self.players, key=lambda p: p.score, reverse=True)

    def round_label(self) -> str:
        if self.snapshot is None or not self.snapshot.current_round:
            return "Waiting..."
        max_rounds = self.snapshot.max_rounds or "?"
        return f"Round {self.snapshot.current_round}/{max_rounds}"


StateListener = Callable[[ReconciledState], None]
PhaseListener = Callable[[Phase, Phase], None]


class StateReconciler:
    """ReconciledState 的唯一写入者"""

    def __init__(self, my_session_id: Optional[str] = None, initial_timer: int = DEFAULT_ROUND_TIME):
        self.my_session_id = my_session_id
        self._initial_timer = initial_timer
        self._snapshot: Optional[GameStateSnapshot] = None
        self._timer = initial_timer
        self._phase = Phase.LOBBY
        self._seq = 0
        self._server_version: Optional[float] = None
        self._change_listeners: List[StateListener] = []
        self._phase_listeners: List[PhaseListener] = []
        self._turn_listeners: List[StateListener] = []

    # 订阅
    def on_change(self, listener: StateListener) -> None:
        self._change_listeners.append(listener)

    def on_phase(self, listener: PhaseListener) -> None:
        self._phase_listeners.append(listener)

    def on_turn_started(self, listener: StateListener) -> None:
        self._turn_listeners.append(listener)

    # 读取
    @property
    def state(self) -> ReconciledState:
        return ReconciledState(
            snapshot=self._snapshot,
            timer=self._timer,
            phase=self._phase,
            my_session_id=self.my_session_id,
            seq=self._seq,
        )

    @property
    def seq(self) -> int:
        return self._seq

    @property
    def phase(self) -> Phase:
        return self._phase

    # 写入
    def set_session(self, session_id: Optional[str]) -> None:
        """重连后会话号可能改变，绘者判断随之重算"""
        if session_id == self.my_session_id:
            return
        self.my_session_id = session_id
        if self._snapshot is not None:
            self._update_phase()
            self._emit_change()

    def begin_pull(self) -> int:
        """发起兜底拉取时记下当前序号，应答到达时据此判断是否已过期"""
        return self._seq

    def apply_snapshot(self, snapshot: Optional[GameStateSnapshot], pulled_at_seq: Optional[int] = None) -> bool:
        """应用一份快照；过期（会回退本地状态）的快照被丢弃，返回是否已应用"""
        if snapshot is None:
            return False
        version = snapshot.version
        if version is not None and self._server_version is not None:
            if version < self._server_version:
                logger.info("丢弃过期快照: version=%s < %s", version, self._server_version)
                return False
        elif pulled_at_seq is not None and pulled_at_seq != self._seq:
            logger.info("拉取期间已收到更新快照，丢弃拉取结果 (seq=%d, pulled_at=%d)", self._seq, pulled_at_seq)
            return False

        previous = self._snapshot
        self._snapshot = snapshot
        self._seq += 1
        if version is not None:
            self._server_version = version
        # 缺失的计时字段保持原值
        if snapshot.game_running and snapshot.round_time is not None:
            self._timer = snapshot.round_time

        new_turn = self._is_new_turn(previous, snapshot)
        self._update_phase()
        if new_turn:
            logger.info(
                "新回合开始: round=%s turn=%s drawer=%s",
                snapshot.current_round,
                snapshot.current_turn,
                snapshot.current_drawer_session_id,
            )
            self._emit(self._turn_listeners)
        self._emit_change()
        return True

    def apply_timer_tick(self, seconds: Optional[int]) -> bool:
        """权威计时：只覆盖倒计时字段"""
        if seconds is None:
            return False
        self._timer = seconds
        self._emit_change()
        return True

    def tick_local(self, seconds: int = 1) -> bool:
        """两次权威计时之间的乐观本地递减（仅用于界面平滑）"""
        if self._phase not in (Phase.DRAWING, Phase.WORD_CHOICE) or self._timer <= 0:
            return False
        self._timer = max(0, self._timer - seconds)
        self._emit_change()
        return True

    def reset(self) -> None:
        """离开房间：丢弃所有房间状态"""
        old_phase = self._phase
        self._snapshot = None
        self._timer = self._initial_timer
        self._phase = Phase.LOBBY
        self._server_version = None
        self._seq += 1
        if old_phase is not Phase.LOBBY:
            self._emit_phase(old_phase, Phase.LOBBY)
        self._emit_change()

    # 内部方法
    def _derive_phase(self, snapshot: GameStateSnapshot) -> Phase:
        if snapshot.game_over:
            return Phase.GAME_OVER
        if snapshot.game_running:
            is_drawer = self.my_session_id is not None and snapshot.current_drawer_session_id == self.my_session_id
            if is_drawer and not snapshot.word_chosen and snapshot.word_choices:
                return Phase.WORD_CHOICE
            return Phase.DRAWING
        if self._phase in (Phase.WORD_CHOICE, Phase.DRAWING, Phase.ROUND_END):
            return Phase.ROUND_END
        return Phase.LOBBY

    def _update_phase(self) -> None:
        new_phase = self._derive_phase(self._snapshot)
        if new_phase is not self._phase:
            old_phase, self._phase = self._phase, new_phase
            logger.info("阶段变化: %s -> %s", old_phase.value, new_phase.value)
            self._emit_phase(old_phase, new_phase)

    @staticmethod
    def _turn_key(snapshot: GameStateSnapshot) -> Tuple[int, int, Optional[str]]:
        return snapshot.current_round, snapshot.current_turn, snapshot.current_drawer_session_id

    def _is_new_turn(self, previous: Optional[GameStateSnapshot], snapshot: GameStateSnapshot) -> bool:
        # 首份快照无法判断是否换了回合（可能是中途加入）
        if previous is None or not snapshot.game_running or snapshot.game_over:
            return False
        if not previous.game_running:
            return True
        return self._turn_key(previous) != self._turn_key(snapshot)

    def _emit_change(self) -> None:
        self._emit(self._change_listeners)

    def _emit(self, listeners: List[StateListener]) -> None:
        state = self.state
        for listener in list(listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("状态监听器异常")

    def _emit_phase(self, old: Phase, new: Phase) -> None:
        for listener in list(self._phase_listeners):
            try:
                listener(old, new)
            except Exception:
                logger.exception("阶段监听器异常")


class ChatLog:
    """聊天记录：保留最近 capacity 条"""

    def __init__(self, capacity: int = CHAT_CAPACITY):
        self._entries = deque(maxlen=max(10, capacity))

    def add(self, entry: ChatEntry) -> None:
        self._entries.append(entry)

    @property
    def entries(self) -> List[ChatEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["Phase", "ReconciledState", "StateReconciler", "ChatLog"]
