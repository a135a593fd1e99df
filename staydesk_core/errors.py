"""
错误分类 - 所有对调用方可见的失败都归入以下几类

- ValidationError: 本地校验失败，发生在任何网络调用之前
- TransportError: 超时或网络不可达
- AuthError: 凭证缺失/失效，会话需要强制登出
- GatewayError: 支付网关拒绝或卡片错误
- ServerError: 非 2xx 响应，或响应体 success=false
"""
from typing import Any, Dict, Optional


class StayDeskError(Exception):
    """
    基础异常

    Attributes:
        user_message: 面向用户的单条提示文本
        context: 附加上下文（booking_id 等）
    """

    default_message = "Something went wrong. Please try again."

    def __init__(self, user_message: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        self.user_message = user_message or self.default_message
        self.context = context or {}
        super().__init__(self.user_message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": self.user_message,
            "context": self.context,
        }


class ValidationError(StayDeskError):
    """本地校验失败"""

    default_message = "Please fill in all required fields"


class TransportError(StayDeskError):
    """传输失败（超时 / 网络）"""

    TIMEOUT = "timeout"
    NETWORK = "network"

    def __init__(self, reason: str, user_message: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        self.reason = reason
        if user_message is None:
            user_message = (
                "Request timed out. Please try again."
                if reason == self.TIMEOUT
                else "Network error. Please check your connection."
            )
        super().__init__(user_message, context)

    @property
    def is_timeout(self) -> bool:
        return self.reason == self.TIMEOUT


class AuthError(StayDeskError):
    """认证失败，需要重新登录"""

    default_message = "Session expired. Please log in again."


class GatewayError(StayDeskError):
    """支付网关拒绝"""

    default_message = "Payment failed."

    def __init__(
        self,
        user_message: Optional[str] = None,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        super().__init__(user_message, context)


class ServerError(StayDeskError):
    """服务端返回失败"""

    default_message = "The server could not complete the request."

    def __init__(
        self,
        user_message: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        super().__init__(user_message, context)


__all__ = [
    "StayDeskError",
    "ValidationError",
    "TransportError",
    "AuthError",
    "GatewayError",
    "ServerError",
]
