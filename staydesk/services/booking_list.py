"""
预订列表协调器

持有权威 + 乐观两层状态的预订集合：
- 分类（即将入住 / 入住中 / 已完成 / 已取消）是纯函数
- 取消先乐观更新本地，服务端拒绝或传输失败时丢弃本地集合并整体重新拉取
- 存在"在线支付且待支付"的预订时，定时向服务端询问支付状态
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional

from staydesk_core.engine import Event, EventBus
from staydesk_core.errors import AuthError, StayDeskError, ValidationError
from staydesk_core.scheduler import ISchedulerBackend
from staydesk.config import settings
from staydesk.models.schemas import (
    Booking,
    BookingCategory,
    BookingStatus,
    CancelledBy,
    PaymentStatus,
)
from staydesk.services.api_client import BookingAPIClient
from staydesk.services import events

logger = logging.getLogger(__name__)

POLL_JOB_ID = "booking-payment-status-poll"

CANCELLED_BY_LABELS = {
    CancelledBy.USER: "You",
    CancelledBy.HOTEL: "Hotel",
    CancelledBy.ADMIN: "Admin",
}


# ============== 分类 ==============

@dataclass
class CategorizedBookings:
    """四个互不相交的分组"""
    upcoming: List[Booking] = field(default_factory=list)
    active: List[Booking] = field(default_factory=list)
    completed: List[Booking] = field(default_factory=list)
    cancelled: List[Booking] = field(default_factory=list)

    def get(self, category: BookingCategory) -> List[Booking]:
        return getattr(self, category.value)

    def as_dict(self) -> Dict[BookingCategory, List[Booking]]:
        return {c: self.get(c) for c in BookingCategory}

    def total(self) -> int:
        return len(self.upcoming) + len(self.active) + len(self.completed) + len(self.cancelled)


def categorize_booking(booking: Booking, today: date) -> BookingCategory:
    """
    按日期与取消状态给单个预订分类（天粒度）

    顺序：已取消优先；离店日早于今天为已完成；
    入住日 <= 今天 <= 离店日为入住中；其余（入住日晚于今天）为即将入住。
    """
    if booking.status == BookingStatus.CANCELLED:
        return BookingCategory.CANCELLED
    if booking.check_out_date < today:
        return BookingCategory.COMPLETED
    if booking.check_in_date <= today <= booking.check_out_date:
        return BookingCategory.ACTIVE
    # 剩下的情况只可能是 check_in > today（离店日 >= 今天且入住日不 <= 今天）
    return BookingCategory.UPCOMING


def categorize(bookings: Iterable[Booking], today: date) -> CategorizedBookings:
    """纯函数：每个预订恰好落入一个分组"""
    result = CategorizedBookings()
    for booking in bookings:
        result.get(categorize_booking(booking, today)).append(booking)
    return result


def describe_cancellation(booking: Booking) -> Optional[str]:
    """取消说明，如 "Cancelled by You on Jun 1, 2024, 3:04 PM" """
    if not booking.cancelled_at:
        return None
    who = CANCELLED_BY_LABELS.get(booking.cancelled_by, "System")
    at = booking.cancelled_at
    hour = at.hour % 12 or 12
    when = f"{at:%b} {at.day}, {at.year}, {hour}:{at:%M} {'AM' if at.hour < 12 else 'PM'}"
    return f"Cancelled by {who} on {when}"


# ============== 协调器 ==============

class BookingListReconciler:
    """
    预订集合的唯一持有者

    所有修改都经过本类方法；读取接口返回副本。

    Args:
        api: REST 客户端
        event_bus: 会话事件总线
        scheduler: 调度后端（支付状态轮询）
        poll_interval: 轮询间隔（秒）
        today: 返回"今天"的函数
        now: 返回当前时间的函数（乐观取消时间戳）
    """

    def __init__(
        self,
        api: BookingAPIClient,
        event_bus: EventBus,
        scheduler: ISchedulerBackend,
        poll_interval: Optional[int] = None,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = datetime.now,
    ):
        self._api = api
        self._bus = event_bus
        self._scheduler = scheduler
        self._poll_interval = poll_interval or settings.PAYMENT_POLL_INTERVAL_SECONDS
        self._today = today
        self._now = now
        self._bookings: List[Booking] = []
        self._status_filter: Optional[str] = None
        self._lock = threading.RLock()
        self._closed = False

        self._bus.subscribe(events.PAYMENT_SUCCEEDED, self._on_payment_succeeded)

    # ---------- 读取 ----------

    @property
    def bookings(self) -> List[Booking]:
        with self._lock:
            return list(self._bookings)

    def get(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            return self._find(booking_id)

    def categorized(self, today: Optional[date] = None) -> CategorizedBookings:
        return categorize(self.bookings, today or self._today())

    def filter_by_category(
        self, category: Optional[BookingCategory], today: Optional[date] = None
    ) -> List[Booking]:
        """列表页筛选：None 表示全部"""
        if category is None:
            return self.bookings
        return self.categorized(today).get(category)

    # ---------- 刷新 ----------

    def refresh(self, status: Optional[str] = None) -> List[Booking]:
        """
        从服务端整体拉取并替换本地集合

        Args:
            status: 可选的服务端状态过滤（Active / Cancelled），会被记住供后续自动刷新使用
        """
        if status is not None:
            self._status_filter = status or None
        resp = self._api.list_bookings(status=self._status_filter)
        self._replace(resp.bookings)
        logger.info(f"Fetched {len(resp.bookings)} bookings")
        return self.bookings

    def _replace(self, bookings: List[Booking]) -> None:
        if self._closed:
            return
        with self._lock:
            self._bookings = list(bookings)
            ids = [b.id for b in self._bookings]
        self._bus.emit(events.BOOKINGS_CHANGED, {"booking_ids": ids}, source="booking_list")
        self._sync_polling()

    # ---------- 取消 ----------

    def cancel(self, booking_id: str, reason: str = "") -> Booking:
        """
        取消预订

        先在本地乐观标记为已取消（取消人为 user），再调用服务端。
        服务端确认后乐观状态即为最终状态（若服务端返回了预订则以其为准）；
        服务端拒绝或传输失败时丢弃本地集合并重新拉取，然后重新抛出原错误。

        Raises:
            ValidationError: 本地不存在或已取消
            StayDeskError: 服务端/传输/认证失败（本地已重新同步）
        """
        with self._lock:
            current = self._find(booking_id)
            if current is None:
                raise ValidationError("Booking not found.", context={"booking_id": booking_id})
            if current.is_cancelled:
                raise ValidationError("Booking is already cancelled.", context={"booking_id": booking_id})

            server_snapshot = list(self._bookings)
            optimistic = current.model_copy(update={
                "status": BookingStatus.CANCELLED,
                "cancelled_at": self._now(),
                "cancelled_by": CancelledBy.USER,
                "cancellation_reason": reason or None,
            })
            self._bookings = [optimistic if b.id == booking_id else b for b in self._bookings]
        self._bus.emit(events.BOOKINGS_CHANGED, {"booking_ids": [b.id for b in self.bookings]}, source="booking_list")

        try:
            resp = self._api.cancel_booking(booking_id, reason)
        except StayDeskError as e:
            logger.warning(f"Cancellation of booking {booking_id} failed ({type(e).__name__}); resyncing")
            self._resync(server_snapshot, auth_failed=isinstance(e, AuthError))
            events.publish_notice(self._bus, "error", e.user_message, source="booking_list")
            raise

        if resp.booking is not None:
            with self._lock:
                self._bookings = [resp.booking if b.id == booking_id else b for b in self._bookings]
        self._replace(self.bookings)
        events.publish_notice(
            self._bus, "success", resp.message or "Booking cancelled successfully", source="booking_list",
        )
        return self.get(booking_id) or optimistic

    def _resync(self, server_snapshot: List[Booking], auth_failed: bool = False) -> None:
        """
        丢弃乐观状态并整体重新拉取；拉取也失败时退回取消前的服务端快照

        认证失败时本地集合保持清空（会话随之登出），不再恢复快照。
        """
        with self._lock:
            self._bookings = []
        if auth_failed:
            self._replace([])
            return
        try:
            self.refresh()
            return
        except StayDeskError as e:
            logger.error(f"Resync after failed cancellation also failed: {e}")
        self._replace(server_snapshot)

    # ---------- 支付状态轮询 ----------

    def _sync_polling(self) -> None:
        """有待支付的在线预订时保持轮询任务，否则移除"""
        if self._closed:
            return
        with self._lock:
            pending = any(b.awaits_online_payment for b in self._bookings)
        has_job = self._scheduler.has_job(POLL_JOB_ID)
        if pending and not has_job:
            self._scheduler.add_job(
                POLL_JOB_ID, self.poll_pending_payments, "interval", seconds=self._poll_interval,
            )
            logger.info(f"Payment status polling started (every {self._poll_interval}s)")
        elif not pending and has_job:
            self._scheduler.remove_job(POLL_JOB_ID)
            logger.info("Payment status polling stopped")

    def poll_pending_payments(self) -> None:
        """
        一次轮询：逐个询问待支付预订的支付状态

        单个预订失败只记录日志，不影响其他预订，也不在本次内重试；
        任一预订变为 Completed 时整体刷新一次。
        """
        with self._lock:
            pending_ids = [b.id for b in self._bookings if b.awaits_online_payment]

        completed = []
        for booking_id in pending_ids:
            if self._closed:
                return
            try:
                resp = self._api.check_payment_status(booking_id)
            except StayDeskError as e:
                logger.warning(f"Payment status check for booking {booking_id} failed: {e}")
                continue
            if resp.payment_status == PaymentStatus.COMPLETED:
                completed.append(booking_id)

        if completed and not self._closed:
            logger.info(f"Payments completed for bookings {completed}; refreshing list")
            try:
                self.refresh()
            except StayDeskError as e:
                logger.warning(f"Refresh after payment completion failed: {e}")

    # ---------- 事件 ----------

    def _on_payment_succeeded(self, event: Event) -> None:
        try:
            self.refresh()
        except StayDeskError as e:
            logger.error(f"Refresh after payment for booking {event.data.get('booking_id')} failed: {e}")
            events.publish_notice(self._bus, "error", e.user_message, source="booking_list")

    # ---------- 生命周期 ----------

    def close(self) -> None:
        """停止轮询并清空本地集合"""
        self._closed = True
        self._bus.unsubscribe(events.PAYMENT_SUCCEEDED, self._on_payment_succeeded)
        self._scheduler.remove_job(POLL_JOB_ID)
        with self._lock:
            self._bookings = []

    def _find(self, booking_id: str) -> Optional[Booking]:
        for b in self._bookings:
            if b.id == booking_id:
                return b
        return None
