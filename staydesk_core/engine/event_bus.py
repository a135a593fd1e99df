"""
staydesk_core/engine/event_bus.py

会话级事件总线 - 内存级发布/订阅模式

每个访客会话构造一个独立实例并注入到该会话的各个组件，
不提供进程级全局实例，会话之间的事件互不可见。
"""
from typing import Callable, Dict, List, Any, Optional, Protocol, Tuple
from dataclasses import dataclass, field
from datetime import datetime
from collections import deque
import logging
import threading
import uuid

logger = logging.getLogger(__name__)

# 类型别名
EventId = str
CorrelationId = str


def _generate_event_id() -> EventId:
    """生成唯一事件ID"""
    return f"{datetime.now().strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:8]}"


class EventHandler(Protocol):
    """事件处理器协议"""

    def __call__(self, event: "Event") -> None:
        ...


@dataclass
class Event:
    """
    事件

    Attributes:
        event_type: 事件类型（如 "bookings.changed"）
        timestamp: 事件时间戳
        data: 事件数据
        source: 触发来源（组件名）
        event_id: 唯一事件ID
        correlation_id: 关联ID（用于事件链追踪）
    """

    event_type: str
    timestamp: datetime
    data: Dict[str, Any]
    source: str = ""
    event_id: EventId = field(default_factory=_generate_event_id)
    correlation_id: Optional[CorrelationId] = None

    def with_correlation(self, parent_id: EventId) -> "Event":
        """设置关联ID并返回自身"""
        self.correlation_id = parent_id
        return self


@dataclass
class PublishResult:
    """
    事件发布结果

    Attributes:
        event_type: 事件类型
        subscriber_count: 订阅者数量
        success_count: 成功处理的处理器数量
        failure_count: 失败的处理器数量
        errors: 处理器错误列表 (handler, exception) 元组
    """

    event_type: str
    subscriber_count: int
    success_count: int
    failure_count: int
    errors: List[Tuple[Callable, Exception]] = field(default_factory=list)


@dataclass
class EventBusStatistics:
    """事件总线统计"""

    total_published: int = 0
    total_processed: int = 0
    total_failed: int = 0
    subscriber_count: Dict[str, int] = field(default_factory=dict)


class EventBus:
    """
    会话级事件总线

    特性：
    - 同步发布，处理器异常隔离
    - 线程安全的订阅管理（socket.io 线程与调度线程都会发布事件）
    - 事件历史记录（可配置大小）
    - 统计信息收集

    Example:
        >>> bus = EventBus()
        >>> bus.subscribe("bookings.changed", lambda e: print(e.data))
        >>> bus.emit("bookings.changed", {"count": 3}, source="booking_list")
    """

    def __init__(self, history_size: int = 100):
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._event_history: deque[Event] = deque(maxlen=history_size)
        self._subscriber_lock = threading.RLock()

        self._stats = EventBusStatistics()
        self._stats_lock = threading.Lock()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """
        订阅事件，同一处理器只登记一次

        Args:
            event_type: 事件类型
            handler: 处理函数，接收 Event 对象作为参数
        """
        with self._subscriber_lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
                logger.debug(f"Handler {_name_of(handler)} subscribed to {event_type}")

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        """取消订阅"""
        with self._subscriber_lock:
            if event_type in self._subscribers and handler in self._subscribers[event_type]:
                self._subscribers[event_type].remove(handler)
                logger.debug(f"Handler {_name_of(handler)} unsubscribed from {event_type}")

    def publish(self, event: Event) -> PublishResult:
        """
        发布事件（同步执行所有处理器）

        处理器异常不会影响其他处理器的执行。

        Returns:
            PublishResult 对象，包含处理统计
        """
        self._event_history.append(event)

        with self._subscriber_lock:
            handlers = self._subscribers.get(event.event_type, []).copy()

        with self._stats_lock:
            self._stats.total_published += 1

        result = PublishResult(
            event_type=event.event_type,
            subscriber_count=len(handlers),
            success_count=0,
            failure_count=0,
        )

        for handler in handlers:
            try:
                handler(event)
                result.success_count += 1
                with self._stats_lock:
                    self._stats.total_processed += 1
            except Exception as e:
                result.failure_count += 1
                result.errors.append((handler, e))
                with self._stats_lock:
                    self._stats.total_failed += 1
                logger.error(
                    f"Event handler {_name_of(handler)} error for {event.event_type}: {e}",
                    exc_info=True,
                )

        return result

    def emit(self, event_type: str, data: Optional[Dict[str, Any]] = None, source: str = "") -> PublishResult:
        """构造并发布事件的便捷方法"""
        return self.publish(Event(
            event_type=event_type,
            timestamp=datetime.now(),
            data=data or {},
            source=source,
        ))

    def get_history(self, event_type: Optional[str] = None, limit: int = 50) -> List[Event]:
        """
        获取事件历史（最新的在前）

        Args:
            event_type: 可选，筛选特定类型的事件
            limit: 返回数量限制
        """
        history = list(self._event_history)
        if event_type:
            history = [e for e in history if e.event_type == event_type]
        return list(reversed(history))[:limit]

    def get_statistics(self) -> EventBusStatistics:
        """获取事件总线统计（副本）"""
        with self._stats_lock:
            stats = EventBusStatistics(
                total_published=self._stats.total_published,
                total_processed=self._stats.total_processed,
                total_failed=self._stats.total_failed,
            )
        with self._subscriber_lock:
            stats.subscriber_count = {
                et: len(handlers) for et, handlers in self._subscribers.items()
            }
        return stats

    def clear(self) -> None:
        """清空订阅、历史与统计（会话关闭时调用）"""
        with self._subscriber_lock:
            self._subscribers.clear()
        self._event_history.clear()
        with self._stats_lock:
            self._stats = EventBusStatistics()


def _name_of(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "EventId",
    "CorrelationId",
    "EventHandler",
    "Event",
    "PublishResult",
    "EventBusStatistics",
    "EventBus",
]
