"""
会话事件类型与用户提示
"""
from staydesk_core.engine import EventBus

# 预订
BOOKINGS_CHANGED = "bookings.changed"
PAYMENT_SUCCEEDED = "booking.payment_succeeded"
PAYMENT_FAILED = "booking.payment_failed"

# 通知
NOTIFICATIONS_CHANGED = "notifications.changed"
CHANNEL_STATE_CHANGED = "notifications.channel_state"

# 会话 / 界面
SESSION_SIGNED_OUT = "session.signed_out"
UI_NOTICE = "ui.notice"


def publish_notice(bus: EventBus, level: str, message: str, source: str = "") -> None:
    """发布一条面向用户的提示（level: success / info / error）"""
    bus.emit(UI_NOTICE, {"level": level, "message": message}, source=source)
