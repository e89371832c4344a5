"""
绘图协议与历史缓冲

与分辨率无关的坐标编码（0~1000 虚拟网格）、可重放的事件日志，以及把日志输出给
渲染器的 DrawBoard。本模块不依赖 pygame，渲染由订阅 DrawBoard 输出的渲染器完成。
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from drawguess.shared.constants import DEFAULT_BRUSH_SIZE, DEFAULT_COLOR, GRID_MAX
from drawguess.shared.protocols import ClearEvent, StrokeEvent

logger = logging.getLogger(__name__)

DrawEventT = Union[StrokeEvent, ClearEvent]


@dataclass(frozen=True)
class CanvasSize:
    width: float
    height: float

    @property
    def valid(self) -> bool:
        return self.width > 0 and self.height > 0

    def as_tuple(self) -> Tuple[int, int]:
        return int(self.width), int(self.height)


@dataclass(frozen=True)
class PixelSegment:
    """像素坐标下的一段线 (x1, y1) -> (x2, y2)"""

    x1: float
    y1: float
    x2: float
    y2: float


def to_grid(coord: float, dim: float) -> int:
    # 先夹紧到画布范围，再按比例映射，半数向上取整
    clamped = min(max(coord, 0.0), dim)
    return int(math.floor(clamped / dim * GRID_MAX + 0.5))


def from_grid(value: int, dim: float) -> float:
    return value / GRID_MAX * dim


def encode_stroke(
    segment: PixelSegment,
    canvas_size: CanvasSize,
    color: str = DEFAULT_COLOR,
    line_width: float = DEFAULT_BRUSH_SIZE,
) -> StrokeEvent:
    """像素线段 -> 网格笔划；画布尺寸为 0 时抛出 ValueError"""
    if not canvas_size.valid:
        raise ValueError(f"cannot encode against degenerate canvas {canvas_size}")
    w, h = canvas_size.width, canvas_size.height
    return StrokeEvent(
        prev_x=to_grid(segment.x1, w),
        prev_y=to_grid(segment.y1, h),
        curr_x=to_grid(segment.x2, w),
        curr_y=to_grid(segment.y2, h),
        color=color,
        line_width=line_width,
    )


def decode_stroke(stroke: StrokeEvent, canvas_size: CanvasSize) -> PixelSegment:
    """网格笔划 -> 像素线段（有损：低于画布 1/1000 的精度不保留）"""
    w, h = canvas_size.width, canvas_size.height
    return PixelSegment(
        from_grid(stroke.prev_x, w),
        from_grid(stroke.prev_y, h),
        from_grid(stroke.curr_x, w),
        from_grid(stroke.curr_y, h),
    )


class DrawHistory:
    """本回合的有序绘图日志：只追加，遇到 Clear 清空"""

    def __init__(self, events: Iterable[DrawEventT] = ()):
        self._events: List[StrokeEvent] = []
        for event in events:
            self.append(event)

    def append(self, event: DrawEventT) -> None:
        if isinstance(event, ClearEvent):
            self._events.clear()
        else:
            self._events.append(event)

    def replace(self, events: Iterable[DrawEventT]) -> None:
        self._events.clear()
        for event in events:
            self.append(event)

    def clear(self) -> None:
        self._events.clear()

    @property
    def events(self) -> Tuple[StrokeEvent, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[StrokeEvent]:
        return iter(list(self._events))

    def __repr__(self) -> str:
        return f"<DrawHistory {len(self._events)} strokes>"


class CanvasRenderer:
    """DrawBoard 输出的消费者；默认实现什么也不画"""

    def reset(self, size: CanvasSize) -> None:
        """重建为指定尺寸的空白（白色）画面"""

    def draw_segment(self, segment: PixelSegment, color: str, width: float) -> None:
        """绘制一段圆头线段"""


class DrawBoard:
    """绘图状态持有者：历史缓冲 + 当前画布尺寸 + 渲染器列表"""

    def __init__(self, size: Optional[CanvasSize] = None):
        self.history = DrawHistory()
        self.size: Optional[CanvasSize] = size if size is not None and size.valid else None
        self._renderers: List[CanvasRenderer] = []
        self._pending: List[DrawEventT] = []

    # 渲染器
    def add_renderer(self, renderer: CanvasRenderer) -> None:
        self._renderers.append(renderer)
        if self.size is not None:
            self._replay_into(renderer)

    # 入站事件
    def enqueue(self, event: DrawEventT) -> None:
        """缓存一条入站事件，等 flush() 批量应用"""
        self._pending.append(event)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def flush(self) -> int:
        """应用缓存的事件；批内最后一个 Clear 之前的笔划全部作废"""
        if not self._pending:
            return 0
        batch, self._pending = self._pending, []
        last_clear = -1
        for idx, event in enumerate(batch):
            if isinstance(event, ClearEvent):
                last_clear = idx
        if last_clear >= 0:
            if last_clear:
                logger.debug("Clear 覆盖了 %d 条未应用的笔划", last_clear)
            self.apply_event(batch[last_clear])
            batch = batch[last_clear + 1:]
        for event in batch:
            self.apply_event(event)
        return len(batch)

    def apply_event(self, event: DrawEventT) -> None:
        if isinstance(event, ClearEvent):
            self.history.clear()
            self._reset_renderers()
            return
        self.history.append(event)
        self._render(event)

    def preview(self, stroke: StrokeEvent) -> None:
        """本地即时绘制（不入历史，历史以服务器回显为准）"""
        self._render(stroke)

    # 重放
    def replay(self, history: Optional[Iterable[DrawEventT]] = None, size: Optional[CanvasSize] = None) -> None:
        """从空白画面确定性地重建画布"""
        if size is not None:
            if not size.valid:
                logger.debug("忽略零尺寸画布: %s", size)
                return
            self.size = size
        if history is not None and history is not self.history:
            self.history.replace(history)
        for renderer in self._renderers:
            self._replay_into(renderer)

    def resize(self, size: CanvasSize) -> bool:
        """画布像素尺寸变化时按新尺寸重放；零尺寸（布局过程中）直接忽略"""
        if not size.valid:
            logger.debug("忽略零尺寸画布: %s", size)
            return False
        if size == self.size:
            return False
        self.replay(size=size)
        return True

    def load_history(self, events: Iterable[DrawEventT]) -> None:
        """加入房间/快照内嵌历史：整体替换并重放"""
        # 快照截至发送时刻是权威的，之前缓存的事件已包含在内
        self._pending.clear()
        self.history.replace(events)
        self.replay()

    def reset(self) -> None:
        """新回合开始：清空历史与缓存"""
        self._pending.clear()
        self.history.clear()
        self._reset_renderers()

    # 内部方法
    def _render(self, stroke: StrokeEvent) -> None:
        if self.size is None:
            return
        segment = decode_stroke(stroke, self.size)
        for renderer in self._renderers:
            renderer.draw_segment(segment, stroke.color, stroke.line_width)

    def _reset_renderers(self) -> None:
        if self.size is None:
            return
        for renderer in self._renderers:
            renderer.reset(self.size)

    def _replay_into(self, renderer: CanvasRenderer) -> None:
        if self.size is None:
            return
        renderer.reset(self.size)
        for stroke in self.history:
            renderer.draw_segment(decode_stroke(stroke, self.size), stroke.color, stroke.line_width)


__all__ = [
    "CanvasSize",
    "PixelSegment",
    "to_grid",
    "from_grid",
    "encode_stroke",
    "decode_stroke",
    "DrawHistory",
    "CanvasRenderer",
    "DrawBoard",
]
