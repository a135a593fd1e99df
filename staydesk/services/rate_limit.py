"""
用户动作限流

- ActionCoalescer: 同一动作键在窗口内的连续触发合并为一次（前沿触发）
- SettleWindow: 终态之后的冷却期，吸收误触的连续点击

两者都属于编排器实例的状态，不依赖任何界面渲染周期。
时钟可注入，便于测试。
"""
import logging
import threading
import time
from typing import Callable, Dict, Hashable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class ActionCoalescer:
    """
    动作合并器

    第一次触发立即放行；此后只要同一键的触发间隔都小于窗口，
    就一直视为同一次突发并被丢弃。

    Example:
        >>> coalescer = ActionCoalescer(window=0.3)
        >>> coalescer.admit(("pay_online", "b1"))
        True
        >>> coalescer.admit(("pay_online", "b1"))
        False
    """

    def __init__(self, window: float, clock: Clock = time.monotonic):
        self.window = window
        self._clock = clock
        self._last_seen: Dict[Hashable, float] = {}
        self._lock = threading.Lock()

    def admit(self, key: Hashable) -> bool:
        """返回 True 表示本次触发应当执行"""
        now = self._clock()
        with self._lock:
            last = self._last_seen.get(key)
            self._last_seen[key] = now
            self._prune(now)
        if last is not None and now - last < self.window:
            logger.debug(f"Coalesced repeated action {key!r}")
            return False
        return True

    def _prune(self, now: float) -> None:
        stale = [k for k, t in self._last_seen.items() if now - t >= self.window * 10]
        for k in stale:
            del self._last_seen[k]


class SettleWindow:
    """终态后的冷却窗口（按键区分）"""

    def __init__(self, duration: float, clock: Clock = time.monotonic):
        self.duration = duration
        self._clock = clock
        self._until: Dict[Hashable, float] = {}
        self._lock = threading.Lock()

    def start(self, key: Hashable) -> None:
        with self._lock:
            self._until[key] = self._clock() + self.duration

    def is_settling(self, key: Hashable) -> bool:
        with self._lock:
            until = self._until.get(key)
            if until is None:
                return False
            if self._clock() >= until:
                del self._until[key]
                return False
            return True
