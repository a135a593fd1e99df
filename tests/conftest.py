"""
Pytest 配置和共享 fixtures
"""
import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional
from unittest.mock import MagicMock

from staydesk_core.engine import EventBus
from staydesk_core.scheduler import ISchedulerBackend
from staydesk.models.schemas import (
    Booking,
    BookingListResponse,
    BookingStatus,
    Notification,
    NotificationListResponse,
    PaymentOption,
    PaymentStatus,
)
from staydesk.services.api_client import BookingAPIClient


TODAY = date(2024, 6, 15)


class FakeClock:
    """可手动推进的单调时钟"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeScheduler(ISchedulerBackend):
    """内存调度后端：只登记任务，由测试手动触发"""

    def __init__(self):
        self.jobs: Dict[str, Dict] = {}
        self.running = False

    def start(self) -> None:
        self.running = True

    def shutdown(self) -> None:
        self.running = False

    def add_job(self, job_id: str, func: Callable, trigger: str, **trigger_args) -> None:
        self.jobs[job_id] = {"func": func, "trigger": trigger, "args": trigger_args}

    def remove_job(self, job_id: str) -> None:
        self.jobs.pop(job_id, None)

    def pause_job(self, job_id: str) -> None:
        self.jobs[job_id]["paused"] = True

    def resume_job(self, job_id: str) -> None:
        self.jobs[job_id]["paused"] = False

    def has_job(self, job_id: str) -> bool:
        return job_id in self.jobs

    def get_jobs(self) -> List[Dict]:
        return [{"id": k, "trigger": v["trigger"]} for k, v in self.jobs.items()]

    def get_job(self, job_id: str) -> Optional[Dict]:
        job = self.jobs.get(job_id)
        return {"id": job_id, "trigger": job["trigger"]} if job else None

    def trigger_job(self, job_id: str) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            raise ValueError(f"Job not found: {job_id}")
        if job["trigger"] == "date":
            del self.jobs[job_id]
        job["func"]()


def make_booking(booking_id: str = "b1", **overrides) -> Booking:
    """构造预订（默认：入住在未来、到店付款、待支付、有效）"""
    data = {
        "_id": booking_id,
        "hotelId": "h1",
        "hotelName": "Lakeside Inn",
        "checkInDate": (TODAY + timedelta(days=5)).isoformat(),
        "checkOutDate": (TODAY + timedelta(days=7)).isoformat(),
        "roomType": "Deluxe",
        "roomQuantity": 1,
        "totalAmount": 200,
        "paymentOption": PaymentOption.PAY_LATER.value,
        "paymentStatus": PaymentStatus.PENDING.value,
        "status": BookingStatus.ACTIVE.value,
    }
    data.update(overrides)
    return Booking.model_validate(data)


def make_notification(notification_id: str = "n1", read: bool = False, **overrides) -> Notification:
    data = {
        "_id": notification_id,
        "type": "BOOKING",
        "title": "Booking confirmed",
        "message": "Your booking is confirmed",
        "read": read,
        "createdAt": datetime(2024, 6, 15, 10, 0).isoformat(),
    }
    data.update(overrides)
    return Notification.model_validate(data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def event_bus():
    """每个测试一个独立的事件总线"""
    return EventBus()


@pytest.fixture
def api():
    """REST 客户端 mock（默认返回空列表）"""
    mock = MagicMock(spec=BookingAPIClient)
    mock.list_bookings.return_value = BookingListResponse(success=True, bookings=[])
    mock.list_notifications.return_value = NotificationListResponse(success=True, notifications=[])
    return mock


@pytest.fixture
def recorded(event_bus):
    """按类型读取总线上已发布事件的数据（按发布顺序）"""
    def of(event_type: str) -> List[Dict]:
        return [e.data for e in reversed(event_bus.get_history(event_type, limit=100))]

    return of
