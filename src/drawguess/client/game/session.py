"""
客户端会话上下文

一个 GameSession 就是一个客户端会话的唯一持有者：
- 连接管理 / 频道路由 / 绘图板 / 状态调和 / 意图发送在这里组装
- 所有入站消息与定时器都在 pump() 中、在持有者线程内处理
- 界面层只读取 state / board / chat 并调用动作接口
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from drawguess.shared.constants import DEFAULT_ENDPOINT, PATH_LOBBY_LIST, STATE_PULL_DELAY
from drawguess.shared.errors import ConnectionLostError
from drawguess.shared.protocols import (
	ClearEvent,
	GameStateSnapshot,
	RoomConfig,
	RoomSummary,
	parse_chat,
	parse_draw_event,
	parse_room_list,
	parse_snapshot,
	parse_timer_tick,
)
from drawguess.client.drawing import CanvasSize, DrawBoard, PixelSegment, encode_stroke
from drawguess.client.game.intents import IntentEmitter, generate_room_code
from drawguess.client.game.state import ChatLog, ReconciledState, StateReconciler
from drawguess.client.network import ConnectionEvent, ConnectionManager, ConnectionState, LineTransport
from drawguess.client.router import ChannelRouter, Topics
from drawguess.client.timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

LOCAL_TICK_INTERVAL = 1.0  # 秒


class GameSession:
	"""会话上下文：替代全局界面状态"""

	def __init__(
		self,
		username: str,
		endpoint: str = DEFAULT_ENDPOINT,
		scheduler: Optional[Scheduler] = None,
		transport_factory=LineTransport,
		canvas_size: Optional[CanvasSize] = None,
		**connection_options: Any,
	):
		self.username = username
		self.endpoint = endpoint
		self.scheduler = scheduler or Scheduler()
		self.connection = ConnectionManager(
			self.scheduler, transport_factory=transport_factory, username=username, **connection_options
		)
		self.router = ChannelRouter(self.connection)
		self.board = DrawBoard(canvas_size)
		self.reconciler = StateReconciler()
		self.chat_log = ChatLog()
		self.intents = IntentEmitter(self.router, self.reconciler, username)

		self.room_id: Optional[str] = None
		self.rooms: List[RoomSummary] = []
		# // 面向用户的提示（仅在重连耗尽后设置）
		self.notice: Optional[str] = None

		# // 本次加入后是否已由快照内嵌历史铺底
		self._history_seeded = False
		self._pull_timer: Optional[TimerHandle] = None
		self._tick_timer: Optional[TimerHandle] = None

		self.connection.add_listener(self._on_connection_event)
		self.router.on_resubscribed(self._on_resubscribed)
		self.reconciler.on_turn_started(self._on_turn_started)

	# 只读视图
	@property
	def state(self) -> ReconciledState:
		return self.reconciler.state

	@property
	def session_id(self) -> Optional[str]:
		return self.connection.session_id

	@property
	def connected(self) -> bool:
		return self.connection.connected

	# 连接
	def connect(self) -> None:
		self.notice = None
		self.connection.connect(self.endpoint)
		self._restart_local_tick()

	def reconnect(self) -> None:
		self.notice = None
		self.connection.reconnect()

	def close(self) -> None:
		"""登出：离开房间并销毁连接"""
		self.leave_room()
		self._cancel(self._tick_timer)
		self._tick_timer = None
		self.connection.disconnect()

	def pump(self) -> int:
		"""主循环每帧调用一次：处理入站帧、推进定时器、批量应用绘图事件"""
		handled = self.connection.pump()
		self.board.flush()
		return handled

	# 房间
	def join_room(self, room_id: str) -> bool:
		self._enter_room(room_id)
		sent = self.intents.join_room(room_id)
		self._schedule_pull()
		return sent

	def create_room(self, config: Optional[RoomConfig] = None, room_id: Optional[str] = None) -> bool:
		room_id = room_id or generate_room_code()
		self._enter_room(room_id)
		sent = self.intents.create_room(room_id, config)
		self._schedule_pull()
		return sent

	def leave_room(self) -> None:
		if self.room_id is None:
			return
		logger.info("离开房间 %s", self.room_id)
		self.router.unsubscribe_all()
		self._history_seeded = False
		self._cancel(self._pull_timer)
		self._pull_timer = None
		self.room_id = None
		self.intents.set_room(None)
		self.reconciler.reset()
		self.board.reset()
		self.chat_log.clear()

	def pull_state(self) -> bool:
		"""一次性状态补拉；应答不能回退拉取期间收到的更新快照"""
		self._pull_timer = None
		if self.room_id is None:
			return False
		room_id = self.room_id
		issued_at = self.reconciler.begin_pull()

		def on_reply(body: Any) -> None:
			if room_id != self.room_id or body is None:
				return
			self._apply_snapshot(parse_snapshot(body), pulled_at_seq=issued_at)

		return self.router.request(Topics(room_id).state_path, on_reply) is not None

	def list_rooms(self, callback: Optional[Callable[[List[RoomSummary]], None]] = None) -> bool:
		def on_reply(body: Any) -> None:
			self.rooms = parse_room_list(body) if body is not None else []
			if callback:
				callback(self.rooms)

		return self.router.request(PATH_LOBBY_LIST, on_reply) is not None

	# 动作
	def draw_segment(self, segment: PixelSegment, color: str, line_width: float) -> bool:
		"""绘者的一段笔划：发出后立即本地预览，历史以服务器回显为准"""
		size = self.board.size
		if size is None:
			return False
		stroke = encode_stroke(segment, size, color, line_width)
		if not self.intents.send_stroke(stroke):
			return False
		self.board.preview(stroke)
		return True

	def clear(self) -> bool:
		if not self.intents.clear():
			return False
		self.board.apply_event(ClearEvent())
		return True

	def chat(self, text: str) -> bool:
		return self.intents.chat(text)

	def start_game(self) -> bool:
		return self.intents.start_game()

	def choose_word(self, word: str) -> bool:
		return self.intents.choose_word(word)

	def resize(self, width: float, height: float) -> bool:
		return self.board.resize(CanvasSize(width, height))

	# 内部：房间
	def _enter_room(self, room_id: str) -> None:
		self.leave_room()
		topics = Topics(room_id)
		self.room_id = topics.room_id
		self.intents.set_room(topics.room_id)
		self.router.subscribe(topics.draw, self._on_draw)
		self.router.subscribe(topics.chat, self._on_chat)
		self.router.subscribe(topics.state, self._on_state)
		self.router.subscribe(topics.timer, self._on_timer)
		# // 迟到者的历史回放走私有队列
		self.router.subscribe(topics.user_draw, self._on_backlog)
		self.router.subscribe(topics.user_errors, self._on_server_error)
		logger.info("进入房间 %s", topics.room_id)

	def _schedule_pull(self) -> None:
		self._cancel(self._pull_timer)
		self._pull_timer = self.scheduler.call_later(STATE_PULL_DELAY, self.pull_state, name="state-pull")

	def _apply_snapshot(self, snapshot: Optional[GameStateSnapshot], pulled_at_seq: Optional[int] = None) -> None:
		if not self.reconciler.apply_snapshot(snapshot, pulled_at_seq=pulled_at_seq):
			return
		if snapshot.draw_history is not None:
			self.board.load_history(snapshot.draw_history)
			self._history_seeded = True

	# 内部：话题处理器
	def _on_draw(self, body: Any) -> None:
		event = parse_draw_event(body)
		if event is not None:
			self.board.enqueue(event)

	def _on_backlog(self, body: Any) -> None:
		# // 内嵌历史已包含服务器随后回放的同一批笔划
		if self._history_seeded:
			return
		self._on_draw(body)

	def _on_chat(self, body: Any) -> None:
		entry = parse_chat(body)
		if entry is not None:
			self.chat_log.add(entry)

	def _on_state(self, body: Any) -> None:
		self._apply_snapshot(parse_snapshot(body))

	def _on_timer(self, body: Any) -> None:
		if self.reconciler.apply_timer_tick(parse_timer_tick(body)):
			# // 本地递减与权威计时对齐
			self._restart_local_tick()

	def _on_server_error(self, body: Any) -> None:
		logger.warning("服务器错误: %r", body)

	# 内部：事件
	def _on_turn_started(self, state: ReconciledState) -> None:
		self.board.reset()

	def _on_resubscribed(self) -> None:
		# // 重连后重新加入房间，服务器会重发状态与历史
		if self.room_id is None:
			return
		self.board.reset()
		self._history_seeded = False
		self.intents.join_room(self.room_id)
		self._schedule_pull()

	def _on_connection_event(self, event: ConnectionEvent) -> None:
		if event.state is ConnectionState.CONNECTED:
			self.notice = None
			self.reconciler.set_session(event.session_id)
		elif event.fatal:
			if isinstance(event.error, ConnectionLostError):
				self.notice = f"与服务器的连接已断开（重试 {event.error.attempts} 次失败）"
			else:
				self.notice = "与服务器的连接已断开"
			logger.error("连接失败: %s", event.error)

	def _restart_local_tick(self) -> None:
		self._cancel(self._tick_timer)
		self._tick_timer = self.scheduler.call_every(
			LOCAL_TICK_INTERVAL, self.reconciler.tick_local, name="local-tick"
		)

	@staticmethod
	def _cancel(timer: Optional[TimerHandle]) -> None:
		if timer is not None:
			timer.cancel()


__all__ = ["GameSession", "LOCAL_TICK_INTERVAL"]
