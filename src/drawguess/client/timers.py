"""
协作式定时器

所有定时器（握手超时、心跳、退避重连、兜底拉取、本地倒计时）都由会话主循环的
pump() 统一驱动，回调只会在持有者线程内执行，不存在并发修改。
时钟可注入，测试时使用假时钟即可精确推进时间。
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class TimerHandle:
    """可取消的定时器句柄"""

    def __init__(self, when: float, callback: Callable[[], None], interval: Optional[float] = None, name: str = ""):
        self.when = when
        self.callback = callback
        self.interval = interval
        self.name = name or getattr(callback, "__name__", "timer")
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not self.cancelled

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else f"at={self.when:.3f}"
        return f"<TimerHandle {self.name} {state}>"


class Scheduler:
    """基于最小堆的定时器队列，由 run_due() 推进"""

    def __init__(self, clock: Clock = time.monotonic):
        self.clock = clock
        self._heap: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self.clock()

    def call_later(self, delay: float, callback: Callable[[], None], name: str = "") -> TimerHandle:
        handle = TimerHandle(self.clock() + max(0.0, delay), callback, name=name)
        self._push(handle)
        return handle

    def call_every(self, interval: float, callback: Callable[[], None], name: str = "") -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TimerHandle(self.clock() + interval, callback, interval=interval, name=name)
        self._push(handle)
        return handle

    def run_due(self) -> int:
        """执行所有已到期的定时器，返回执行数量"""
        now = self.clock()
        ran = 0
        while self._heap and self._heap[0][0] <= now:
            _, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            if handle.interval is not None:
                # 周期定时器先重新入队，回调内部可以 cancel 自己
                handle.when += handle.interval
                if handle.when <= now:
                    handle.when = now + handle.interval
                self._push(handle)
            ran += 1
            try:
                handle.callback()
            except Exception:
                logger.exception("定时器回调异常: %s", handle.name)
        return ran

    def next_deadline(self) -> Optional[float]:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def pending(self) -> int:
        return sum(1 for _, _, h in self._heap if not h.cancelled)

    def cancel_all(self) -> None:
        for _, _, handle in self._heap:
            handle.cancel()
        self._heap.clear()

    def _push(self, handle: TimerHandle) -> None:
        heapq.heappush(self._heap, (handle.when, next(self._counter), handle))


__all__ = ["Clock", "TimerHandle", "Scheduler"]
