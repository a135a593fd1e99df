"""
staydesk_core - 客户端运行时框架

独立于具体酒店业务的框架层，包含：
- engine: 会话级事件总线、状态机
- scheduler: 定时任务后端接口
- payment: 支付网关接口
- errors: 错误分类

使用方式:
    >>> from staydesk_core.engine import EventBus, StateMachine
    >>> from staydesk_core.scheduler import ISchedulerBackend
    >>> from staydesk_core.payment import IPaymentGateway, PaymentResult
    >>> from staydesk_core.errors import ValidationError, GatewayError
"""
from staydesk_core.engine import EventBus, Event, StateMachine, StateMachineConfig, StateTransition
from staydesk_core.scheduler import ISchedulerBackend
from staydesk_core.payment import IPaymentGateway, PaymentResult
from staydesk_core.errors import (
    StayDeskError,
    ValidationError,
    TransportError,
    AuthError,
    GatewayError,
    ServerError,
)

__version__ = "0.1.0"

__all__ = [
    "EventBus",
    "Event",
    "StateMachine",
    "StateMachineConfig",
    "StateTransition",
    "ISchedulerBackend",
    "IPaymentGateway",
    "PaymentResult",
    "StayDeskError",
    "ValidationError",
    "TransportError",
    "AuthError",
    "GatewayError",
    "ServerError",
]
