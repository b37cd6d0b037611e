"""Monthly passenger charges and automatic-billing capacity."""

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.core.config import settings
from cyclepay.models.shared import utc_today
from cyclepay.models.subscription import Subscription
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.repositories.passenger_repository import PassengerRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.charge_service import ChargeService
from cyclepay.services.config_service import ConfigKey, ConfigService
from cyclepay.services.payment_gateway import PixGatewayBase
from cyclepay.services.plan_rules import supports_auto_fill, supports_billing
from cyclepay.services.subscription_dates import due_date_in_month, next_month

logger = logging.getLogger(__name__)


class PassengerBillingService:
    """Generates next-period passenger charges for billing-capable drivers."""

    def __init__(self, db: Session, gateway: PixGatewayBase | None = None):
        self.db = db
        self.subscription_repo = SubscriptionRepository(db)
        self.passenger_repo = PassengerRepository(db)
        self.passenger_charge_repo = PassengerChargeRepository(db)
        self.charge_service = ChargeService(db, gateway)
        self.config = ConfigService(db)

    def generate_renewal_charges(
        self,
        today: date | None = None,
        cutoff_day: int | None = None,
        force: bool = False,
    ) -> int:
        """Create next month's charges for every billable passenger.

        Does nothing before the generation day of the month unless ``force`` is set.
        Drivers qualify with a live (active or trial) subscription on a plan that
        supports billing and no scheduled cancellation.

        Returns:
            Number of charges created.
        """
        today = today or utc_today()
        if cutoff_day is None:
            cutoff_day = self.config.get_int(ConfigKey.RENEWAL_GENERATION_DAY)
        if today.day < cutoff_day and not force:
            logger.info("Passenger charge generation skipped: day %d < %d", today.day, cutoff_day)
            return 0

        month, year = next_month(today)
        created = 0
        for subscription in self.subscription_repo.get_billing_candidates():
            if not supports_billing(subscription.plan):
                continue
            created += self.generate_for_driver(UUID(str(subscription.driver_id)), month, year)

        logger.info("Generated %d passenger charges for %02d/%d", created, month, year)
        return created

    def generate_for_driver(self, driver_id: UUID, month: int, year: int) -> int:
        created = 0
        for passenger in self.passenger_repo.get_billable(driver_id):
            fee = Decimal(str(passenger.monthly_fee or 0))
            if fee <= 0:
                continue
            if self.passenger_charge_repo.exists_for_period(UUID(str(passenger.id)), month, year):
                continue
            due_day = int(passenger.due_day or settings.default_passenger_due_day)
            self.charge_service.create_passenger_charge(
                passenger,
                due_date=due_date_in_month(month, year, due_day),
                period_month=month,
                period_year=year,
            )
            created += 1
        return created

    def auto_fill(self, subscription: Subscription) -> int:
        """Enable automatic billing on the oldest eligible passengers up to the contracted quota.

        Passengers switched off by hand are left alone.
        """
        if not supports_auto_fill(subscription.plan):
            return 0
        driver_id = UUID(str(subscription.driver_id))
        free_slots = int(subscription.contracted_quota or 0) - self.passenger_repo.count_billable(
            driver_id
        )
        if free_slots <= 0:
            return 0

        candidates = self.passenger_repo.get_auto_fill_candidates(driver_id, free_slots)
        enabled = self.passenger_repo.enable_auto_billing([UUID(str(p.id)) for p in candidates])
        if enabled:
            logger.info("Enabled automatic billing for %d passengers of driver %s", enabled, driver_id)
        return enabled
