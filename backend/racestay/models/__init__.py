from racestay.models.user import User
from racestay.models.property import Property
from racestay.models.race import Race
from racestay.models.province_rate import ProvinceRate
from racestay.models.booking import Booking
from racestay.models.points_transaction import PointsTransaction, TransactionType
from racestay.models.availability import AvailabilityEntry
from racestay.models.message_channel import MessageChannel
from racestay.models.notification import Notification
from racestay.models.subscription import Subscription
from racestay.models.subscription_payment import SubscriptionPayment
from racestay.models.processed_webhook_event import ProcessedWebhookEvent
from racestay.models.account_activation_log import AccountActivationLog

__all__ = [
    "User",
    "Property",
    "Race",
    "ProvinceRate",
    "Booking",
    "PointsTransaction",
    "TransactionType",
    "AvailabilityEntry",
    "MessageChannel",
    "Notification",
    "Subscription",
    "SubscriptionPayment",
    "ProcessedWebhookEvent",
    "AccountActivationLog",
]
