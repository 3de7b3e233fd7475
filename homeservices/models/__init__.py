"""Database models for the home-services escrow backend."""

from .user import User
from .job import Job
from .payment import Payment, PaymentStatus
from .transfer import Transfer
from .refund import Refund
from .dispute import Dispute, DisputeStatus
from .notification import Notification, NotificationType
from .push_subscription import PushSubscription
from .analytics_event import AnalyticsEvent

__all__ = [
    'User', 'Job', 'Payment', 'PaymentStatus', 'Transfer', 'Refund',
    'Dispute', 'DisputeStatus', 'Notification', 'NotificationType',
    'PushSubscription', 'AnalyticsEvent',
]
