"""
访客会话 - 登录后显式构造，持有本次会话的全部组件

    session = GuestSession(token)
    session.open()
    ...
    session.sign_out()

组件之间只通过构造参数和会话事件总线相互连接，不存在全局单例。
任意调用遇到 AuthError 时强制登出并发布 session.signed_out。
"""
import logging
import threading
from typing import Callable, Optional

from jose import JWTError, jwt
import socketio

from staydesk_core.engine import EventBus
from staydesk_core.errors import AuthError, StayDeskError
from staydesk_core.payment import IPaymentGateway
from staydesk_core.scheduler import ISchedulerBackend
from staydesk.config import Settings, settings as default_settings
from staydesk.services.api_client import BookingAPIClient
from staydesk.services.booking_list import BookingListReconciler
from staydesk.services.booking_orchestrator import BookingOrchestrator
from staydesk.services.notification_channel import NotificationChannel
from staydesk.services.notification_store import NotificationStore
from staydesk.services.payment_gateway import StripeGateway
from staydesk.services.rate_limit import ActionCoalescer, SettleWindow
from staydesk.services.scheduler_backend import APSchedulerBackend
from staydesk.services import events

logger = logging.getLogger(__name__)


def user_id_from_token(token: str) -> str:
    """
    从凭证的声明中读取访客 ID（不校验签名，签名由服务端负责）

    Raises:
        AuthError: 凭证无法解析或不含 id
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as e:
        raise AuthError("Invalid session token. Please log in again.") from e
    user_id = claims.get("id") or claims.get("_id") or claims.get("sub")
    if not user_id:
        raise AuthError("Invalid session token. Please log in again.")
    return str(user_id)


class GuestSession:
    """
    访客会话

    Args:
        token: Bearer 凭证
        user_id: 访客 ID，缺省时从凭证声明中读取
        config: 客户端设置
        api / gateway / scheduler / event_bus: 可注入的组件（测试用）
        socket_client_factory: socketio.Client 工厂
    """

    def __init__(
        self,
        token: str,
        user_id: Optional[str] = None,
        config: Optional[Settings] = None,
        api: Optional[BookingAPIClient] = None,
        gateway: Optional[IPaymentGateway] = None,
        scheduler: Optional[ISchedulerBackend] = None,
        event_bus: Optional[EventBus] = None,
        socket_client_factory: Optional[Callable[[], socketio.Client]] = None,
    ):
        if not token:
            raise AuthError("Please log in to continue.")
        cfg = config or default_settings
        self.settings = cfg
        self.user_id = user_id or user_id_from_token(token)
        self.event_bus = event_bus or EventBus()

        self.api = api or BookingAPIClient(cfg.API_BASE_URL, token, timeout=cfg.HTTP_TIMEOUT)
        self.api.on_auth_error = self._on_auth_error
        self._gateway = gateway
        self.scheduler = scheduler or APSchedulerBackend()

        self.bookings = BookingListReconciler(
            self.api, self.event_bus, self.scheduler, poll_interval=cfg.PAYMENT_POLL_INTERVAL_SECONDS,
        )
        self.orchestrator = BookingOrchestrator(
            self.api,
            _LazyGateway(self),
            self.bookings,
            self.event_bus,
            coalescer=ActionCoalescer(cfg.ACTION_COALESCE_SECONDS),
            settle=SettleWindow(cfg.PAYMENT_SETTLE_SECONDS),
            discount_percent=cfg.ONLINE_DISCOUNT_PERCENT,
        )
        self.notifications = NotificationStore(self.api, self.event_bus, page_size=cfg.NOTIFICATION_PAGE_SIZE)
        channel_kwargs = {"client_factory": socket_client_factory} if socket_client_factory else {}
        self.channel = NotificationChannel(
            self.notifications,
            self.event_bus,
            self.scheduler,
            url=cfg.socket_url,
            token=token,
            user_id=self.user_id,
            connect_timeout=cfg.SOCKET_CONNECT_TIMEOUT,
            reconnect_delay=cfg.SOCKET_RECONNECT_DELAY_SECONDS,
            reconnect_delay_max=cfg.SOCKET_RECONNECT_DELAY_MAX_SECONDS,
            **channel_kwargs,
        )

        self._opened = False
        self._closed = False
        self._lock = threading.Lock()

    @property
    def gateway(self) -> IPaymentGateway:
        """支付网关在第一次确认支付时才创建（缺少可公开密钥不影响其他功能）"""
        if self._gateway is None:
            self._gateway = StripeGateway(self.settings.STRIPE_PUBLISHABLE_KEY)
        return self._gateway

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    def open(self, with_channel: bool = True) -> "GuestSession":
        """
        启动调度器，拉取预订与通知，打开实时通道

        Raises:
            StayDeskError: 初次拉取失败（AuthError 时会话已被登出）
        """
        if self._closed:
            raise AuthError("Session has been signed out.")
        self.scheduler.start()
        self._opened = True
        self.bookings.refresh()
        self.notifications.fetch_all()
        if with_channel:
            self.channel.open()
        logger.info(f"Session opened for user {self.user_id}")
        return self

    def sign_out(self, reason: str = "user") -> None:
        """结束会话：补偿未完成的支付、断开通道、停止轮询、释放连接"""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        logger.info(f"Signing out user {self.user_id} ({reason})")
        try:
            self.orchestrator.close()
        except StayDeskError as e:
            logger.warning(f"Payment compensation during sign-out failed: {e}")
        self.channel.close()
        self.bookings.close()
        self.notifications.clear()
        self.scheduler.shutdown()
        self.api.close()
        self.event_bus.emit(events.SESSION_SIGNED_OUT, {"user_id": self.user_id, "reason": reason}, source="session")

    close = sign_out

    def _on_auth_error(self, error: AuthError) -> None:
        if self._closed:
            return
        events.publish_notice(self.event_bus, "error", error.user_message, source="session")
        self.sign_out(reason="auth_error")

    def __enter__(self) -> "GuestSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.sign_out()


class _LazyGateway(IPaymentGateway):
    """把网关的创建推迟到会话第一次需要它时"""

    def __init__(self, session: GuestSession):
        self._session = session

    def confirm_card_payment(self, client_secret, payment_method):
        return self._session.gateway.confirm_card_payment(client_secret, payment_method)

    def get_gateway_type(self) -> str:
        return self._session.gateway.get_gateway_type()
