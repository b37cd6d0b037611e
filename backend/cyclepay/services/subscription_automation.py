"""Scheduled subscription sweeps: renewals, trial expiry, suspension, abandonment, cancellation.

Every sweep is idempotent; running one twice for the same date changes nothing
the second time.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.models.charge import BillingType
from cyclepay.models.passenger import PassengerDisabledReason
from cyclepay.models.shared import utc_today
from cyclepay.repositories.charge_repository import ChargeRepository
from cyclepay.repositories.driver_repository import DriverRepository
from cyclepay.repositories.passenger_repository import PassengerRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.charge_service import ChargeService
from cyclepay.services.config_service import ConfigKey, ConfigService
from cyclepay.services.payment_gateway import PixGatewayBase
from cyclepay.services.subscription_lifecycle import SubscriptionLifecycleService
from cyclepay.services.subscription_dates import to_date

logger = logging.getLogger(__name__)


class SubscriptionAutomationService:
    """Date-driven subscription transitions."""

    def __init__(self, db: Session, gateway: PixGatewayBase | None = None):
        self.db = db
        self.subscription_repo = SubscriptionRepository(db)
        self.charge_repo = ChargeRepository(db)
        self.driver_repo = DriverRepository(db)
        self.passenger_repo = PassengerRepository(db)
        self.charge_service = ChargeService(db, gateway)
        self.lifecycle = SubscriptionLifecycleService(db, gateway)
        self.config = ConfigService(db)

    def generate_subscription_renewals(self, as_of: date | None = None) -> int:
        """Create renewal charges for cycles ending ``RENEWAL_LEAD_DAYS`` from ``as_of``."""
        as_of = as_of or utc_today()
        target = as_of + timedelta(days=self.config.get_int(ConfigKey.RENEWAL_LEAD_DAYS))
        created = 0
        for subscription in self.subscription_repo.get_renewable(target):
            price = Decimal(str(subscription.applied_price or 0))
            if price <= 0:
                continue
            if self.charge_repo.open_renewal_exists(UUID(str(subscription.id)), target):
                continue
            self.charge_service.create_subscription_charge(
                subscription, price, BillingType.RENEWAL, target
            )
            created += 1
        logger.info("Generated %d subscription renewals for cycles ending %s", created, target)
        return created

    def process_trial_expirations(self, as_of: date | None = None) -> int:
        as_of = as_of or utc_today()
        expired = self.subscription_repo.get_expired_trials(as_of)
        for subscription in expired:
            self.lifecycle.process_trial_end(subscription)
        return len(expired)

    def suspend_overdue_subscriptions(self, as_of: date | None = None) -> int:
        """Suspend live subscriptions with a renewal or activation charge past its due date."""
        as_of = as_of or utc_today()
        suspended = 0
        seen: set[UUID] = set()
        for charge in self.charge_repo.get_overdue_for_live_subscriptions(as_of):
            subscription_id = UUID(str(charge.subscription_id))
            if subscription_id in seen:
                continue
            seen.add(subscription_id)
            subscription = self.subscription_repo.get_by_id(subscription_id)
            if subscription is not None and self.lifecycle.suspend(subscription):
                suspended += 1
        logger.info("Suspended %d overdue subscriptions", suspended)
        return suspended

    def cleanup_abandoned(self, as_of: date | None = None, grace_days: int | None = None) -> int:
        """Cancel subscriptions left suspended past the abandonment window.

        Open charges are cancelled at the gateway and a driver with no other live
        subscription is deactivated.
        """
        as_of = as_of or utc_today()
        if grace_days is None:
            grace_days = self.config.get_int(ConfigKey.ABANDONMENT_GRACE_DAYS)

        cancelled = 0
        for subscription in self.subscription_repo.get_suspended():
            since = subscription.suspended_at or subscription.cycle_end
            if since is None or (as_of - to_date(since)).days < grace_days:  # type: ignore[arg-type]
                continue

            driver_id = UUID(str(subscription.driver_id))
            self.charge_service.cancel_pending_for_subscription(UUID(str(subscription.id)))
            self.lifecycle.cancel(subscription)
            if self.subscription_repo.get_active_for_driver(driver_id) is None:
                self.charge_service.cancel_pending_for_driver(driver_id)
                self.driver_repo.deactivate(driver_id)
                logger.info("Driver %s deactivated after abandonment", driver_id)
            cancelled += 1

        logger.info("Cancelled %d abandoned subscriptions", cancelled)
        return cancelled

    def finalize_scheduled_cancellations(self, as_of: date | None = None) -> int:
        """Cancel subscriptions whose requested cancellation has reached the end of the cycle."""
        as_of = as_of or utc_today()
        due = self.subscription_repo.get_due_cancellations(as_of)
        for subscription in due:
            driver_id = UUID(str(subscription.driver_id))
            self.charge_service.cancel_pending_for_subscription(UUID(str(subscription.id)))
            self.lifecycle.cancel(subscription)
            self.passenger_repo.disable_auto_billing(driver_id, PassengerDisabledReason.PLAN)
        if due:
            logger.info("Finalized %d scheduled cancellations", len(due))
        return len(due)

    def run_daily_monitor(self, as_of: date | None = None) -> dict[str, int]:
        as_of = as_of or utc_today()
        return {
            "trials_expired": self.process_trial_expirations(as_of),
            "suspended": self.suspend_overdue_subscriptions(as_of),
            "abandoned": self.cleanup_abandoned(as_of),
            "cancellations_finalized": self.finalize_scheduled_cancellations(as_of),
        }
