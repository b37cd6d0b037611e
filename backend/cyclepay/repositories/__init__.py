from cyclepay.repositories.charge_repository import ChargeRepository
from cyclepay.repositories.config_entry_repository import ConfigEntryRepository
from cyclepay.repositories.driver_repository import DriverRepository
from cyclepay.repositories.notification_repository import NotificationRepository
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.repositories.passenger_repository import PassengerRepository
from cyclepay.repositories.payout_transaction_repository import PayoutTransactionRepository
from cyclepay.repositories.pending_key_validation_repository import (
    PendingKeyValidationRepository,
)
from cyclepay.repositories.plan_repository import PlanRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository

__all__ = [
    "ChargeRepository",
    "ConfigEntryRepository",
    "DriverRepository",
    "NotificationRepository",
    "PassengerChargeRepository",
    "PassengerRepository",
    "PayoutTransactionRepository",
    "PendingKeyValidationRepository",
    "PlanRepository",
    "SubscriptionRepository",
]
