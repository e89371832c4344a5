"""
用户界面模块

基于 Pygame 的渲染消费者：
- 画布 SurfaceRenderer：订阅 DrawBoard 的输出，把网格笔划画到离屏 Surface 上
- 聊天面板 ChatPanel：渲染会话的聊天记录
- HUD 渲染器 HudRenderer：回合/计时/词语/记分板

该模块与 Pygame 紧耦合用于渲染，但不负责网络逻辑；
同步由 `drawguess.client.game.GameSession` 提供，界面层只读取其视图。
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import pygame

from drawguess.shared.constants import CANVAS_BACKGROUND
from drawguess.shared.protocols import ChatEntry
from drawguess.client.drawing import CanvasRenderer, CanvasSize, PixelSegment
from drawguess.client.game.state import ReconciledState


class SurfaceRenderer(CanvasRenderer):
	"""画布渲染器：白底离屏 Surface，圆头线段（不需要显示窗口）"""

	def __init__(self, size: Optional[CanvasSize] = None):
		self.surface: Optional[pygame.Surface] = None
		if size is not None and size.valid:
			self.reset(size)

	def reset(self, size: CanvasSize) -> None:
		# // 尺寸变化时重建 Surface，否则直接铺白
		w, h = max(1, int(size.width)), max(1, int(size.height))
		if self.surface is None or self.surface.get_size() != (w, h):
			self.surface = pygame.Surface((w, h))
		self.surface.fill(pygame.Color(CANVAS_BACKGROUND))

	def draw_segment(self, segment: PixelSegment, color: str, width: float) -> None:
		if self.surface is None:
			return
		c = pygame.Color(color)
		w = max(1, int(round(width)))
		start = (int(round(segment.x1)), int(round(segment.y1)))
		end = (int(round(segment.x2)), int(round(segment.y2)))
		pygame.draw.line(self.surface, c, start, end, w)
		# // 两端补圆，模拟 round line cap
		radius = max(1, w // 2)
		pygame.draw.circle(self.surface, c, start, radius)
		pygame.draw.circle(self.surface, c, end, radius)

	def pixels(self) -> bytes:
		"""RGB 像素快照，用于比较两次渲染是否一致"""
		if self.surface is None:
			return b""
		return pygame.image.tobytes(self.surface, "RGB")

	def render(self, target: pygame.Surface, pos: Tuple[int, int] = (0, 0)) -> None:
		if self.surface is not None:
			target.blit(self.surface, pos)


_CHAT_COLORS = {
	"CHAT": (20, 20, 20),
	"SYSTEM": (90, 90, 160),
	"JOIN": (40, 140, 60),
	"LEAVE": (160, 90, 40),
	"GUESS_CORRECT": (30, 150, 30),
}


class ChatPanel:
	"""聊天面板：只渲染末尾若干行"""

	def __init__(self, font: Optional[pygame.font.Font] = None):
		self._font = font or pygame.font.SysFont(None, 18)

	@staticmethod
	def format_entry(entry: ChatEntry) -> str:
		if entry.type == "CHAT":
			return f"{entry.sender}: {entry.content}"
		return entry.content

	def render(self, surface: pygame.Surface, entries: List[ChatEntry], rect: pygame.Rect) -> None:
		x, y = rect.left + 6, rect.top + 6
		line_h = self._font.get_linesize() + 4
		max_lines = max(1, rect.height // line_h)
		for entry in entries[-max_lines:]:
			fg = _CHAT_COLORS.get(entry.type, (20, 20, 20))
			surf = self._font.render(self.format_entry(entry), True, fg)
			surface.blit(surf, (x, y))
			y += line_h


class HudRenderer:
	"""HUD 渲染器：回合、计时、词语与记分板"""

	def __init__(self, title_font: Optional[pygame.font.Font] = None, item_font: Optional[pygame.font.Font] = None):
		self._title_font = title_font or pygame.font.SysFont(None, 24)
		self._item_font = item_font or pygame.font.SysFont(None, 20)

	def render(
		self, surface: pygame.Surface, state: ReconciledState, rect: pygame.Rect, notice: Optional[str] = None
	) -> None:
		title = f"Room: {state.room_id or '-'}   {state.round_label()}   Time: {state.timer}s"
		surface.blit(self._title_font.render(title, True, (10, 10, 10)), (rect.left + 6, rect.top + 6))

		y = rect.top + 6 + self._title_font.get_linesize() + 4
		if state.game_over:
			meta = "Game over"
		elif state.choosing_word:
			meta = "Choose a word: " + " / ".join(f"[{i + 1}] {w}" for i, w in enumerate(state.word_choices))
		else:
			role = "You are drawing" if state.is_drawer else "Guess the word"
			meta = f"{role}: {state.visible_word}"
		surface.blit(self._item_font.render(meta, True, (30, 30, 30)), (rect.left + 6, y))
		y += self._item_font.get_linesize() + 6

		# // 记分板（按分数排序，绘者加标记）
		for player in state.leaderboard():
			mark = "*" if player.session_id == state.drawer_session_id else " "
			line = f"{mark} {player.username}: {player.score}"
			surface.blit(self._item_font.render(line, True, (40, 40, 40)), (rect.left + 6, y))
			y += self._item_font.get_linesize() + 3

		if notice:
			surface.blit(self._item_font.render(notice, True, (200, 30, 30)), (rect.left + 6, rect.bottom - 24))


__all__ = [
	"SurfaceRenderer",
	"ChatPanel",
	"HudRenderer",
]
