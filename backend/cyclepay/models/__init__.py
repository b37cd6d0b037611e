from cyclepay.models.charge import BillingType, Charge, ChargeStatus
from cyclepay.models.config_entry import ConfigEntry
from cyclepay.models.driver import Driver, PayoutKeyStatus, PayoutKeyType
from cyclepay.models.notification import Notification, NotificationStatus, NotificationType
from cyclepay.models.passenger import Passenger, PassengerDisabledReason
from cyclepay.models.passenger_charge import PassengerCharge, PayoutStatus
from cyclepay.models.payout_transaction import PayoutTransaction, PayoutTransactionStatus
from cyclepay.models.pending_key_validation import PendingKeyValidation
from cyclepay.models.plan import Plan, PlanSlug
from cyclepay.models.subscription import PriceOrigin, Subscription, SubscriptionStatus

__all__ = [
    "BillingType",
    "Charge",
    "ChargeStatus",
    "ConfigEntry",
    "Driver",
    "Notification",
    "NotificationStatus",
    "NotificationType",
    "Passenger",
    "PassengerCharge",
    "PassengerDisabledReason",
    "PayoutKeyStatus",
    "PayoutKeyType",
    "PayoutStatus",
    "PayoutTransaction",
    "PayoutTransactionStatus",
    "PendingKeyValidation",
    "Plan",
    "PlanSlug",
    "PriceOrigin",
    "Subscription",
    "SubscriptionStatus",
]
