"""
staydesk_core/engine - 核心引擎模块

- event_bus: 会话级事件总线（发布/订阅）
- state_machine: 状态机（状态转换）

使用方式:
    >>> from staydesk_core.engine import EventBus, StateMachine, StateMachineConfig
"""

from staydesk_core.engine.event_bus import (
    EventId,
    CorrelationId,
    EventHandler,
    Event,
    PublishResult,
    EventBusStatistics,
    EventBus,
)

from staydesk_core.engine.state_machine import (
    StateTransition,
    StateMachineConfig,
    StateMachineSnapshot,
    StateMachine,
)

__all__ = [
    "EventId",
    "CorrelationId",
    "EventHandler",
    "Event",
    "PublishResult",
    "EventBusStatistics",
    "EventBus",
    "StateTransition",
    "StateMachineConfig",
    "StateMachineSnapshot",
    "StateMachine",
]
