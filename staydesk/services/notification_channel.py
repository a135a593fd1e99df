"""
实时通知通道 - python-socketio 客户端

    Disconnected --connect--> Connecting --authenticated--> Authenticated --stream--> Streaming
    Connecting / Authenticated / Streaming --drop--> Disconnected

握手时同时在请求头和 auth 载荷中携带 Bearer 凭证，连接成功后发送
authenticate(userId)。服务端若在回执中明确拒绝则断开。
会话打开期间，断线后按指数退避通过调度后端安排重连；
重连后进入 Streaming 时重新全量拉取通知，补上断线期间错过的推送。
Streaming 之前到达的推送一律丢弃。
"""
import logging
import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from staydesk_core.engine import EventBus, StateMachine, StateMachineConfig, StateTransition
from staydesk_core.errors import StayDeskError
from staydesk_core.scheduler import ISchedulerBackend
from staydesk.config import settings
from staydesk.services.notification_store import NotificationStore
from staydesk.services import events

logger = logging.getLogger(__name__)

RECONNECT_JOB_ID = "notification-channel-reconnect"
RESYNC_JOB_ID = "notification-resync"


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    STREAMING = "streaming"


def _create_channel_state_machine() -> StateMachine:
    S = ChannelState
    return StateMachine(
        config=StateMachineConfig(
            name="NotificationChannel",
            states=[s.value for s in S],
            transitions=[
                StateTransition(S.DISCONNECTED.value, S.CONNECTING.value, "connect"),
                StateTransition(S.CONNECTING.value, S.AUTHENTICATED.value, "authenticated"),
                StateTransition(S.AUTHENTICATED.value, S.STREAMING.value, "stream"),
                StateTransition(S.CONNECTING.value, S.DISCONNECTED.value, "drop"),
                StateTransition(S.AUTHENTICATED.value, S.DISCONNECTED.value, "drop"),
                StateTransition(S.STREAMING.value, S.DISCONNECTED.value, "drop"),
            ],
            initial_state=S.DISCONNECTED.value,
        )
    )


def _default_client_factory() -> socketio.Client:
    # 重连由本通道自己调度
    return socketio.Client(reconnection=False, logger=False)


def _id_of(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        value = payload.get("notificationId") or payload.get("_id") or payload.get("id")
        return str(value) if value else None
    return str(payload) if payload else None


class NotificationChannel:
    """
    通知推送通道

    Args:
        store: 通知存储（推送事件的落点）
        event_bus: 会话事件总线（发布通道状态）
        scheduler: 调度后端（重连与重同步）
        url: socket.io 服务地址
        token: Bearer 凭证
        user_id: 访客 ID（authenticate 事件参数）
        client_factory: 创建 socketio.Client 的工厂，每次连接尝试新建一个
    """

    def __init__(
        self,
        store: NotificationStore,
        event_bus: EventBus,
        scheduler: ISchedulerBackend,
        url: str,
        token: str,
        user_id: str,
        client_factory: Callable[[], socketio.Client] = _default_client_factory,
        connect_timeout: Optional[float] = None,
        reconnect_delay: Optional[float] = None,
        reconnect_delay_max: Optional[float] = None,
    ):
        self._store = store
        self._bus = event_bus
        self._scheduler = scheduler
        self._url = url
        self._token = token
        self._user_id = user_id
        self._client_factory = client_factory
        self._connect_timeout = connect_timeout or settings.SOCKET_CONNECT_TIMEOUT
        self._reconnect_delay = reconnect_delay or settings.SOCKET_RECONNECT_DELAY_SECONDS
        self._reconnect_delay_max = reconnect_delay_max or settings.SOCKET_RECONNECT_DELAY_MAX_SECONDS

        self._machine = _create_channel_state_machine()
        self._client: Optional[socketio.Client] = None
        self._open = False
        self._attempts = 0
        self._has_streamed = False
        self._lock = threading.RLock()

    @property
    def state(self) -> ChannelState:
        return ChannelState(self._machine.current_state)

    @property
    def is_open(self) -> bool:
        return self._open

    # ---------- 生命周期 ----------

    def open(self) -> None:
        """会话打开：开始连接，之后断线自动重连"""
        self._open = True
        self.connect()

    def close(self) -> None:
        """会话结束：取消重连并断开"""
        with self._lock:
            self._open = False
            client, self._client = self._client, None
            self._fire("drop")
        self._scheduler.remove_job(RECONNECT_JOB_ID)
        self._scheduler.remove_job(RESYNC_JOB_ID)
        if client is not None:
            client.disconnect()
        logger.info("Notification channel closed")

    def connect(self) -> None:
        """一次连接尝试（也是重连任务的入口）"""
        with self._lock:
            if not self._open or self.state != ChannelState.DISCONNECTED:
                return
            client = self._client_factory()
            self._client = client
            self._register(client)
            self._fire("connect")

        logger.info(f"Connecting notification channel to {self._url}")
        try:
            client.connect(
                self._url,
                headers={"Authorization": f"Bearer {self._token}", "token": self._token},
                auth={"token": self._token},
                wait_timeout=self._connect_timeout,
            )
        except SocketConnectionError as e:
            logger.warning(f"Notification channel connection failed: {e}")
            self._drop(client)

    # ---------- socket 事件 ----------

    def _register(self, client: socketio.Client) -> None:
        client.on("connect", lambda *args: self._on_connect(client))
        client.on("connect_error", lambda *args: self._on_connect_error(client, *args))
        client.on("disconnect", lambda *args: self._drop(client))
        client.on("newNotification", lambda *args: self._dispatch(client, "newNotification", *args))
        client.on("notificationRead", lambda *args: self._dispatch(client, "notificationRead", *args))
        client.on("allNotificationsRead", lambda *args: self._dispatch(client, "allNotificationsRead", *args))
        client.on("notificationDeleted", lambda *args: self._dispatch(client, "notificationDeleted", *args))

    def _on_connect(self, client: socketio.Client) -> None:
        if client is not self._client:
            return
        with self._lock:
            if client is not self._client:
                return
            self._fire("authenticated")
            self._fire("stream")
            resync = self._has_streamed
            self._has_streamed = True
            self._attempts = 0
        # 发送 authenticate 时必须已处于 Streaming
        client.emit("authenticate", self._user_id, callback=lambda *ack: self._on_auth_ack(client, *ack))
        logger.info(f"Notification channel streaming for user {self._user_id}")
        if resync:
            self._scheduler.add_job(RESYNC_JOB_ID, self._resync, "date")

    def _on_auth_ack(self, client: socketio.Client, *ack: Any) -> None:
        data = ack[0] if ack else None
        if isinstance(data, dict) and data.get("success") is False:
            logger.warning(f"Notification channel authentication rejected: {data.get('message')}")
            client.disconnect()

    def _on_connect_error(self, client: socketio.Client, data: Any = None) -> None:
        logger.warning(f"Notification channel connect error: {data}")

    def _dispatch(self, client: socketio.Client, event_name: str, payload: Any = None) -> None:
        if client is not self._client or self.state != ChannelState.STREAMING:
            logger.debug(f"Dropping {event_name}: channel is {self.state.value}")
            return
        if event_name == "newNotification":
            self._store.apply_new(payload or {})
        elif event_name == "allNotificationsRead":
            self._store.apply_all_read()
        else:
            notification_id = _id_of(payload)
            if notification_id is None:
                logger.warning(f"Dropping {event_name} without a notification id")
            elif event_name == "notificationRead":
                self._store.apply_read(notification_id)
            else:
                self._store.apply_deleted(notification_id)

    def _drop(self, client: socketio.Client) -> None:
        """连接失败或断线：回到 Disconnected，会话仍打开时安排重连"""
        with self._lock:
            if client is not self._client:
                return
            self._client = None
            self._fire("drop")
            reopen = self._open
        if reopen:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        with self._lock:
            delay = min(self._reconnect_delay * (2 ** self._attempts), self._reconnect_delay_max)
            self._attempts += 1
        logger.info(f"Reconnecting notification channel in {delay:.1f}s (attempt {self._attempts})")
        self._scheduler.add_job(
            RECONNECT_JOB_ID, self.connect, "date", run_date=datetime.now() + timedelta(seconds=delay),
        )

    def _resync(self) -> None:
        try:
            self._store.fetch_all()
        except StayDeskError as e:
            logger.warning(f"Notification resync after reconnect failed: {e}")

    def _fire(self, trigger: str) -> None:
        previous = self.state
        if not self._machine.can_fire(trigger):
            return
        self._machine.fire(trigger)
        self._bus.emit(
            events.CHANNEL_STATE_CHANGED,
            {"state": self.state.value, "previous_state": previous.value},
            source="notification_channel",
        )
