# Client Services
from staydesk.services import events
from staydesk.services.api_client import BookingAPIClient
from staydesk.services.payment_gateway import StripeGateway
from staydesk.services.scheduler_backend import APSchedulerBackend
from staydesk.services.rate_limit import ActionCoalescer, SettleWindow
from staydesk.services.booking_list import BookingListReconciler, categorize
from staydesk.services.booking_orchestrator import BookingOrchestrator, PaymentPhase, quote_total
from staydesk.services.notification_store import NotificationStore
from staydesk.services.notification_channel import NotificationChannel, ChannelState
from staydesk.services.session import GuestSession

__all__ = [
    'events', 'BookingAPIClient', 'StripeGateway', 'APSchedulerBackend',
    'ActionCoalescer', 'SettleWindow', 'BookingListReconciler', 'categorize',
    'BookingOrchestrator', 'PaymentPhase', 'quote_total',
    'NotificationStore', 'NotificationChannel', 'ChannelState', 'GuestSession'
]
