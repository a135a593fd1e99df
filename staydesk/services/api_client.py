"""
预订 / 通知 REST 客户端 - 基于 httpx 的同步客户端

每个请求都携带 Bearer 凭证（同时保留旧版 token 头），
响应统一解析为 pydantic 模型，失败统一映射到错误分类：
超时/网络 → TransportError，401/403 → AuthError，其余失败 → ServerError。
"""
import logging
from typing import Any, Callable, Dict, Optional, Type, TypeVar

import httpx
from pydantic import ValidationError as SchemaValidationError

from staydesk_core.errors import AuthError, ServerError, TransportError
from staydesk.config import settings
from staydesk.models.schemas import (
    ApiResult,
    BookingListResponse,
    CancelBookingResponse,
    CreateBookingResponse,
    NotificationListResponse,
    PaymentStatusResponse,
    PayOnlineResponse,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=ApiResult)

AUTH_FAILURE_PREFIX = "Not Authorized"


class BookingAPIClient:
    """
    预订与通知 REST 客户端

    Args:
        base_url: 服务端根地址
        token: Bearer 凭证
        on_auth_error: 认证失败回调（会话据此强制登出），在抛出 AuthError 之前调用
        transport: 可选的 httpx 传输层（测试中注入 MockTransport）
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        on_auth_error: Optional[Callable[[AuthError], None]] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._token = token
        self.on_auth_error = on_auth_error
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT,
            headers={
                "Authorization": f"Bearer {token}",
                "token": token,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # ============== 预订 ==============

    def create_booking(self, payload: Dict[str, Any]) -> CreateBookingResponse:
        return self._request(
            "POST", "/api/booking/book", CreateBookingResponse,
            json=payload, timeout=settings.BOOKING_CREATE_TIMEOUT,
        )

    def list_bookings(self, status: Optional[str] = None) -> BookingListResponse:
        params = {"status": status} if status else None
        return self._request("GET", "/api/booking/my-bookings", BookingListResponse, params=params)

    def pay_online(self, booking_id: str) -> PayOnlineResponse:
        return self._request(
            "POST", f"/api/booking/bookings/{booking_id}/pay-online", PayOnlineResponse,
            json={}, timeout=settings.PAY_ONLINE_TIMEOUT,
        )

    def revert_to_pay_later(self, booking_id: str) -> ApiResult:
        return self._request(
            "POST", f"/api/booking/bookings/{booking_id}/revert-to-pay-later", ApiResult, json={},
        )

    def cancel_booking(self, booking_id: str, reason: str = "") -> CancelBookingResponse:
        return self._request(
            "DELETE", f"/api/booking/bookings/{booking_id}", CancelBookingResponse,
            json={"cancellationReason": reason},
        )

    def check_payment_status(self, booking_id: str) -> PaymentStatusResponse:
        return self._request(
            "GET", f"/api/booking/check-payment-status/{booking_id}", PaymentStatusResponse,
        )

    # ============== 通知 ==============

    def list_notifications(self, page: int = 1, limit: Optional[int] = None) -> NotificationListResponse:
        params = {"page": page, "limit": limit or settings.NOTIFICATION_PAGE_SIZE}
        return self._request("GET", "/api/notifications", NotificationListResponse, params=params)

    def mark_notification_read(self, notification_id: str) -> ApiResult:
        return self._request("POST", f"/api/notifications/{notification_id}/read", ApiResult, json={})

    def mark_all_notifications_read(self) -> ApiResult:
        return self._request("POST", "/api/notifications/mark-all-read", ApiResult, json={})

    def delete_notification(self, notification_id: str) -> ApiResult:
        return self._request("DELETE", f"/api/notifications/{notification_id}", ApiResult)

    def delete_read_notifications(self) -> ApiResult:
        return self._request("DELETE", "/api/notifications/read/all", ApiResult)

    # ============== 内部 ==============

    def _request(self, method: str, path: str, model: Type[T], **kwargs) -> T:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out: {e}")
            raise TransportError(TransportError.TIMEOUT, context={"path": path}) from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransportError(TransportError.NETWORK, context={"path": path}) from e

        body = _json_or_empty(resp)
        message = body.get("message") if isinstance(body, dict) else None

        if resp.status_code in (401, 403) or (message or "").startswith(AUTH_FAILURE_PREFIX):
            error = AuthError(context={"path": path, "status_code": resp.status_code})
            logger.warning(f"{method} {path} rejected credential ({resp.status_code}): {message}")
            if self.on_auth_error is not None:
                self.on_auth_error(error)
            raise error

        if resp.is_error:
            raise ServerError(message or f"Request failed ({resp.status_code})", status_code=resp.status_code)

        try:
            result = model.model_validate(body)
        except SchemaValidationError as e:
            logger.error(f"{method} {path} returned an unexpected body: {e}")
            raise ServerError("Unexpected response from server", status_code=resp.status_code) from e

        if not result.success:
            raise ServerError(result.message or "Request failed", status_code=resp.status_code)
        return result


def _json_or_empty(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
