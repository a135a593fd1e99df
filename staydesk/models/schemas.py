"""
Pydantic 模式定义
服务端 JSON（camelCase、Mongo 风格 _id）与客户端模型之间的转换
"""
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, Field, AliasChoices, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel


# ============== 枚举 ==============

class PaymentOption(str, Enum):
    PAY_LATER = "pay_later"
    PAY_ONLINE = "pay_online"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class BookingStatus(str, Enum):
    ACTIVE = "Active"
    CANCELLED = "Cancelled"


class CancelledBy(str, Enum):
    USER = "user"
    HOTEL = "hotel"
    ADMIN = "admin"
    SYSTEM = "system"


class BookingCategory(str, Enum):
    """预订分类（派生，不持久化）"""
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class NotificationType(str, Enum):
    BOOKING = "BOOKING"
    REVIEW = "REVIEW"
    PAYMENT = "PAYMENT"
    SYSTEM = "SYSTEM"
    OTHER = "OTHER"


def to_day(value: Any) -> Optional[date]:
    """把日期 / 日期时间 / ISO 字符串统一截断到天"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f"Unsupported date value: {value!r}")


class _ServerModel(BaseModel):
    """服务端 JSON 使用 camelCase 字段名"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ============== 预订 Schemas ==============

class Booking(_ServerModel):
    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    hotel_id: str = ""
    hotel_name: Optional[str] = None
    hotel_image: Optional[str] = None
    check_in_date: date
    check_out_date: date
    room_type: str
    room_quantity: int = Field(default=1, ge=1)
    total_amount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_applied: Decimal = Decimal("0")
    payment_option: PaymentOption = PaymentOption.PAY_LATER
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: BookingStatus = BookingStatus.ACTIVE
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[CancelledBy] = None
    cancellation_reason: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _unpack_populated_hotel(cls, data: Any) -> Any:
        # 列表接口会把 hotelId 展开成完整酒店对象
        if isinstance(data, dict) and isinstance(data.get("hotelId"), dict):
            data = dict(data)
            hotel = data["hotelId"]
            data["hotelId"] = str(hotel.get("_id") or hotel.get("id") or "")
            data.setdefault("hotelName", hotel.get("name"))
            data.setdefault("hotelImage", hotel.get("image"))
        return data

    @field_validator("check_in_date", "check_out_date", mode="before")
    @classmethod
    def _truncate_to_day(cls, v):
        return to_day(v)

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingStatus.CANCELLED

    @property
    def awaits_online_payment(self) -> bool:
        """在线支付且仍未完成（轮询对象）"""
        return (
            self.payment_option == PaymentOption.PAY_ONLINE
            and self.payment_status == PaymentStatus.PENDING
            and not self.is_cancelled
        )


class BookingRequest(BaseModel):
    """
    创建预订的输入

    字段保持宽松（Optional），缺失项由编排器在网络调用前统一校验，
    以便给出统一的提示文本。
    """
    hotel_id: str
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    room_type: Optional[str] = None
    room_quantity: Optional[int] = 1
    payment_option: Optional[PaymentOption] = PaymentOption.PAY_LATER
    room_price: Decimal = Field(default=Decimal("0"), ge=0)
    discount_percent: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("check_in_date", "check_out_date", mode="before")
    @classmethod
    def _truncate_to_day(cls, v):
        return to_day(v)

    @property
    def nights(self) -> int:
        if not self.check_in_date or not self.check_out_date:
            return 0
        return (self.check_out_date - self.check_in_date).days

    def to_payload(self, total_amount: Decimal, discount_applied: int) -> Dict[str, Any]:
        """组装 booking-create 请求体"""
        return {
            "hotelId": self.hotel_id,
            "checkInDate": self.check_in_date.isoformat(),
            "checkOutDate": self.check_out_date.isoformat(),
            "roomQuantity": int(self.room_quantity),
            "roomType": self.room_type,
            "paymentOption": self.payment_option.value,
            "totalAmount": float(total_amount),
            "discountApplied": discount_applied,
        }


# ============== 通知 Schemas ==============

class Notification(_ServerModel):
    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    type: NotificationType = NotificationType.OTHER
    title: str = ""
    message: str = ""
    link: Optional[str] = None
    read: bool = False
    created_at: Optional[datetime] = None

    @field_validator("type", mode="before")
    @classmethod
    def _unknown_type_is_other(cls, v):
        if isinstance(v, NotificationType):
            return v
        try:
            return NotificationType(str(v).upper())
        except ValueError:
            return NotificationType.OTHER


# ============== 响应 Schemas ==============

class ApiResult(_ServerModel):
    success: bool = False
    message: Optional[str] = None


class CreateBookingResponse(ApiResult):
    booking_id: Optional[str] = None
    client_secret: Optional[str] = None


class BookingListResponse(ApiResult):
    bookings: List[Booking] = Field(default_factory=list)


class PayOnlineResponse(ApiResult):
    booking_id: Optional[str] = None
    client_secret: Optional[str] = None


class CancelBookingResponse(ApiResult):
    booking: Optional[Booking] = None


class PaymentStatusResponse(ApiResult):
    payment_status: Optional[PaymentStatus] = None


class NotificationListResponse(ApiResult):
    notifications: List[Notification] = Field(default_factory=list)
    unread_count: Optional[int] = None
    total: Optional[int] = None
