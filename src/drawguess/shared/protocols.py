"""
协议定义

两层结构：
- Message: 行分隔 JSON 信封 {"type": ..., "data": {...}}，网络层直接透传 to_json() + "\\n"
- pydantic 模型: 话题消息体（绘图/聊天/状态快照/计时）与发送意图，按 type 字段做标签联合

所有入站消息体在边界处校验，未知或畸形消息直接丢弃（记录日志），不会进入状态机。
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from drawguess.shared.constants import DEFAULT_BRUSH_SIZE, DEFAULT_COLOR, GRID_MAX
from drawguess.shared.errors import ProtocolError

logger = logging.getLogger(__name__)


class Message:
    """行分隔 JSON 信封"""

    def __init__(self, msg_type: str, data: Dict[str, Any] = None):
        self.type = msg_type
        self.data = data or {}

    def to_json(self) -> str:
        return json.dumps({"type": self.type, "data": self.data}, ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: str) -> "Message":
        try:
            obj = json.loads(json_str)
        except ValueError as exc:
            raise ProtocolError(f"invalid json: {exc}") from exc
        if not isinstance(obj, dict) or not isinstance(obj.get("type"), str):
            raise ProtocolError("frame without type")
        data = obj.get("data") or {}
        if not isinstance(data, dict):
            raise ProtocolError(f"frame data must be an object, got {type(data).__name__}")
        return cls(obj["type"], data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return self.type == other.type and self.data == other.data

    def __repr__(self) -> str:
        return f"Message({self.type!r}, {self.data!r})"


class WireModel(BaseModel):
    """线上消息体基类：驼峰别名、忽略未知字段、不可变"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---- 绘图事件 ----
GridCoord = Annotated[int, Field(ge=0, le=GRID_MAX)]


class StrokeEvent(WireModel):
    """一段笔划：两点连线，坐标位于 0~1000 虚拟网格"""

    type: Literal["DRAW"] = "DRAW"
    prev_x: GridCoord = Field(alias="prevX")
    prev_y: GridCoord = Field(alias="prevY")
    curr_x: GridCoord = Field(alias="currX")
    curr_y: GridCoord = Field(alias="currY")
    color: str = Field(default=DEFAULT_COLOR, pattern=r"^#[0-9A-Fa-f]{6}$")
    line_width: float = Field(default=DEFAULT_BRUSH_SIZE, alias="lineWidth", gt=0)

    @field_validator("prev_x", "prev_y", "curr_x", "curr_y", mode="before")
    @classmethod
    def _round_coordinate(cls, value: Any) -> Any:
        # 服务器以浮点回显坐标时取整
        if isinstance(value, float):
            return round(value)
        return value


class ClearEvent(WireModel):
    """清空画布"""

    type: Literal["CLEAR"] = "CLEAR"


DrawEvent = Annotated[Union[StrokeEvent, ClearEvent], Field(discriminator="type")]
_draw_event_adapter: TypeAdapter = TypeAdapter(DrawEvent)


# ---- 聊天 ----
class ChatEntry(WireModel):
    type: Literal["CHAT", "JOIN", "LEAVE", "SYSTEM", "GUESS_CORRECT"] = "CHAT"
    sender: str = ""
    content: str = ""
    sender_session_id: Optional[str] = Field(default=None, alias="senderSessionId")


# ---- 房间与状态快照 ----
class Player(WireModel):
    session_id: str = Field(alias="sessionId")
    username: str = ""
    score: int = Field(default=0, ge=0)


class GameStateSnapshot(WireModel):
    """服务器广播的完整房间状态（不可变）"""

    room_id: str = Field(default="", alias="roomId")
    players: List[Player] = Field(default_factory=list)
    current_round: int = Field(default=0, alias="currentRound")
    max_rounds: int = Field(default=0, validation_alias=AliasChoices("maxRounds", "totalRounds", "max_rounds"))
    current_turn: int = Field(default=0, alias="currentTurn")
    max_turns: int = Field(default=0, alias="maxTurns")
    current_drawer_session_id: Optional[str] = Field(default=None, alias="currentDrawerSessionId")
    current_word: Optional[str] = Field(default=None, alias="currentWord")
    hint_word: Optional[str] = Field(default=None, alias="hintWord")
    game_running: bool = Field(
        default=False, validation_alias=AliasChoices("isGameRunning", "gameRunning", "game_running")
    )
    game_over: bool = Field(default=False, alias="gameOver")
    word_choices: List[str] = Field(default_factory=list, alias="wordChoices")
    word_chosen: bool = Field(default=False, alias="wordChosen")
    round_time: Optional[int] = Field(default=None, alias="roundTime")
    draw_history: Optional[List[DrawEvent]] = Field(default=None, alias="drawHistory")
    seq: Optional[int] = Field(default=None, validation_alias=AliasChoices("seq", "sequence"))
    timestamp: Optional[float] = None
    drawing_time: Optional[int] = Field(default=None, alias="drawingTime")
    max_players: Optional[int] = Field(default=None, alias="maxPlayers")
    lobby_name: Optional[str] = Field(default=None, alias="lobbyName")
    is_private: Optional[bool] = Field(default=None, alias="isPrivate")

    @field_validator("players", "word_choices", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("draw_history", mode="before")
    @classmethod
    def _drop_bad_history_entries(cls, value: Any) -> Any:
        # 内嵌历史中单条畸形笔划不应拖垮整个快照
        if not isinstance(value, list):
            return value
        kept = []
        for item in value:
            try:
                _draw_event_adapter.validate_python(item)
            except ValidationError:
                logger.debug("丢弃快照内畸形绘图事件: %r", item)
                continue
            kept.append(item)
        return kept

    def player(self, session_id: Optional[str]) -> Optional[Player]:
        for p in self.players:
            if p.session_id == session_id:
                return p
        return None

    @property
    def version(self) -> Optional[float]:
        """服务器提供的单调版本（seq 优先，其次 timestamp）"""
        if self.seq is not None:
            return float(self.seq)
        return self.timestamp


class RoomSummary(WireModel):
    """房间列表中的一项（只读，供大厅浏览器使用）"""

    room_id: str = Field(alias="roomId")
    lobby_name: str = Field(default="", alias="lobbyName")
    players: List[Player] = Field(default_factory=list)
    max_players: int = Field(default=0, alias="maxPlayers")
    drawing_time: int = Field(default=0, alias="drawingTime")
    max_rounds: int = Field(default=0, alias="maxRounds")


# ---- 发送意图 ----
class RoomConfig(WireModel):
    """创建房间时的大厅配置"""

    language: str = "English"
    scoring_mode: Literal["Chill", "Normal", "Competitive"] = Field(default="Chill", alias="scoringMode")
    drawing_time: int = Field(default=120, alias="drawingTime", ge=30, le=300)
    rounds: int = Field(default=4, ge=1, le=10)
    max_players: int = Field(default=24, alias="maxPlayers", ge=2, le=50)
    players_per_ip_limit: int = Field(default=2, alias="playersPerIpLimit", ge=1, le=10)
    custom_words_per_turn: int = Field(default=3, alias="customWordsPerTurn", ge=0, le=5)
    custom_words: List[str] = Field(default_factory=list, alias="customWords")
    is_private: bool = Field(default=False, alias="isPrivate")
    lobby_name: str = Field(default="", alias="lobbyName")


class JoinRequest(WireModel):
    username: str = Field(min_length=1)
    room_id: str = Field(alias="roomId", min_length=1)
    action: Literal["create", "join"]
    config: Optional[RoomConfig] = None

    @model_validator(mode="after")
    def _config_only_for_create(self) -> "JoinRequest":
        if self.action == "join" and self.config is not None:
            raise ValueError("config is only accepted when creating a room")
        return self


class ChatIntent(WireModel):
    type: Literal["CHAT"] = "CHAT"
    sender: str
    content: str = Field(min_length=1)


class WordChoice(WireModel):
    word: str = Field(min_length=1)


# ---- 入站解析（失败返回 None 并记录日志） ----
def parse_draw_event(payload: Any) -> Optional[Union[StrokeEvent, ClearEvent]]:
    try:
        return _draw_event_adapter.validate_python(payload)
    except ValidationError as exc:
        logger.warning("丢弃畸形绘图消息: %s", exc.errors(include_url=False))
        return None


def parse_chat(payload: Any) -> Optional[ChatEntry]:
    try:
        return ChatEntry.model_validate(payload)
    except ValidationError as exc:
        logger.warning("丢弃畸形聊天消息: %s", exc.errors(include_url=False))
        return None


def parse_snapshot(payload: Any) -> Optional[GameStateSnapshot]:
    if payload is None:
        return None
    try:
        return GameStateSnapshot.model_validate(payload)
    except ValidationError as exc:
        logger.warning("丢弃畸形状态快照: %s", exc.errors(include_url=False))
        return None


def parse_timer_tick(payload: Any) -> Optional[int]:
    """计时消息是裸整数秒数，也兼容数字字符串"""
    if isinstance(payload, bool):
        return None
    if isinstance(payload, str):
        try:
            payload = int(payload.strip())
        except ValueError:
            logger.warning("丢弃畸形计时消息: %r", payload)
            return None
    if isinstance(payload, float) and payload.is_integer():
        payload = int(payload)
    if not isinstance(payload, int) or payload < 0:
        logger.warning("丢弃畸形计时消息: %r", payload)
        return None
    return payload


def parse_room_list(payload: Any) -> List[RoomSummary]:
    if not isinstance(payload, list):
        logger.warning("房间列表格式错误: %r", type(payload).__name__)
        return []
    rooms: List[RoomSummary] = []
    for item in payload:
        try:
            rooms.append(RoomSummary.model_validate(item))
        except ValidationError:
            logger.debug("跳过畸形房间条目: %r", item)
    return rooms


__all__ = [
    "Message",
    "WireModel",
    "StrokeEvent",
    "ClearEvent",
    "DrawEvent",
    "ChatEntry",
    "Player",
    "GameStateSnapshot",
    "RoomSummary",
    "RoomConfig",
    "JoinRequest",
    "ChatIntent",
    "WordChoice",
    "parse_draw_event",
    "parse_chat",
    "parse_snapshot",
    "parse_timer_tick",
    "parse_room_list",
]
