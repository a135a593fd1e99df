from staydesk.models.schemas import (
    PaymentOption,
    PaymentStatus,
    BookingStatus,
    CancelledBy,
    BookingCategory,
    NotificationType,
    Booking,
    BookingRequest,
    Notification,
    ApiResult,
    CreateBookingResponse,
    BookingListResponse,
    PayOnlineResponse,
    CancelBookingResponse,
    PaymentStatusResponse,
    NotificationListResponse,
)

__all__ = [
    "PaymentOption",
    "PaymentStatus",
    "BookingStatus",
    "CancelledBy",
    "BookingCategory",
    "NotificationType",
    "Booking",
    "BookingRequest",
    "Notification",
    "ApiResult",
    "CreateBookingResponse",
    "BookingListResponse",
    "PayOnlineResponse",
    "CancelBookingResponse",
    "PaymentStatusResponse",
    "NotificationListResponse",
]
