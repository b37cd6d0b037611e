"""Payment reconciliation: applies confirmed Pix payments to charges and subscriptions."""

import logging
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.core.errors import NotFoundError
from cyclepay.models.charge import PLAN_CHANGE_BILLING_TYPES, BillingType, Charge, ChargeStatus
from cyclepay.models.notification import NotificationType
from cyclepay.models.shared import to_money
from cyclepay.models.subscription import Subscription
from cyclepay.repositories.charge_repository import ChargeRepository
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.charge_service import ChargeService
from cyclepay.services.notification_service import NotificationService
from cyclepay.services.passenger_billing import PassengerBillingService
from cyclepay.services.payment_gateway import PixGatewayBase
from cyclepay.services.subscription_dates import add_months, next_cycle_end, to_date

logger = logging.getLogger(__name__)

CYCLE_BILLING_TYPES = (BillingType.RENEWAL, BillingType.DOWNGRADE)


class PaymentReconciliationService:
    """Applies payment confirmations exactly once."""

    def __init__(self, db: Session, gateway: PixGatewayBase | None = None):
        self.db = db
        self.charge_repo = ChargeRepository(db)
        self.passenger_charge_repo = PassengerChargeRepository(db)
        self.subscription_repo = SubscriptionRepository(db)
        self.charge_service = ChargeService(db, gateway)
        self.passenger_billing = PassengerBillingService(db, gateway)
        self.notification_service = NotificationService(db)

    def confirm_payment(
        self,
        charge_id: UUID,
        paid_amount: Decimal,
        paid_at: datetime,
    ) -> date | None:
        """Settle a subscription charge and activate the subscription it pays for.

        1. Flip the charge pending -> paid, storing the cycle it pays for
        2. Cancel pending charges the payment supersedes
        3. Deactivate every other live row of the driver
        4. Activate the paid row
        5. Enable automatic billing up to the contracted quota
        6. Mark the charge reconciled and notify the driver

        A charge that was not pending is a no-op, unless it was paid but never
        reconciled: steps 2-6 are then finished with the stored cycle.

        Returns:
            The subscription's cycle end after the payment.

        Raises:
            NotFoundError: If the charge or its subscription does not exist.
        """
        charge = self.charge_repo.get_by_id(charge_id)
        if not charge:
            raise NotFoundError(f"Charge {charge_id} not found")
        subscription = self.subscription_repo.get_by_id(UUID(str(charge.subscription_id)))
        if not subscription:
            raise NotFoundError(f"Subscription {charge.subscription_id} not found")

        billing_type = BillingType(charge.billing_type)
        cycle_end, anchor_date = self._next_cycle(subscription, billing_type, to_date(paid_at))

        if not self.charge_repo.mark_paid_if_pending(
            UUID(str(charge.id)), to_money(paid_amount), paid_at, cycle_end, anchor_date
        ):
            if not self._interrupted(charge):
                logger.info("Charge %s already processed, ignoring confirmation", charge.id)
                return subscription.cycle_end  # type: ignore[return-value]
            cycle_end = charge.applied_cycle_end  # type: ignore[assignment]
            anchor_date = charge.applied_anchor_date  # type: ignore[assignment]
            logger.warning("Finishing interrupted confirmation of charge %s", charge.id)

        self._cancel_superseded(charge, billing_type)

        subscription_id = UUID(str(subscription.id))
        driver_id = UUID(str(subscription.driver_id))
        for other_id in self.subscription_repo.deactivate_others(driver_id, subscription_id):
            self.charge_service.cancel_pending_for_subscription(other_id)

        activated = self.subscription_repo.activate(subscription_id, cycle_end, anchor_date)
        if activated is not None:
            self.passenger_billing.auto_fill(activated)

        if self.charge_repo.mark_reconciled(UUID(str(charge.id))):
            self.notification_service.enqueue(
                driver_id,
                NotificationType.SUBSCRIPTION_ACTIVATED,
                {
                    "subscription_id": str(subscription_id),
                    "charge_id": str(charge.id),
                    "cycle_end": cycle_end.isoformat(),
                },
            )
        logger.info(
            "Confirmed %s charge %s, subscription %s active until %s",
            billing_type.value,
            charge.id,
            subscription_id,
            cycle_end,
        )
        return cycle_end

    def confirm_passenger_payment(
        self,
        charge_id: UUID,
        paid_amount: Decimal,
        paid_at: datetime,
    ) -> bool:
        """Settle a passenger charge. Returns False if it was already settled."""
        if not self.passenger_charge_repo.get_by_id(charge_id):
            raise NotFoundError(f"Passenger charge {charge_id} not found")
        if not self.passenger_charge_repo.mark_paid_if_pending(
            charge_id, to_money(paid_amount), paid_at
        ):
            logger.info("Passenger charge %s already processed, ignoring confirmation", charge_id)
            return False
        logger.info("Confirmed passenger charge %s", charge_id)
        return True

    @staticmethod
    def _interrupted(charge: Charge) -> bool:
        return (
            charge.status == ChargeStatus.PAID.value
            and charge.reconciled_at is None
            and charge.applied_cycle_end is not None
        )

    @staticmethod
    def _next_cycle(
        subscription: Subscription, billing_type: BillingType, paid_on: date
    ) -> tuple[date, date]:
        previous = subscription.cycle_end
        anchor = subscription.anchor_date

        if billing_type == BillingType.UPGRADE and previous is not None:
            return previous, anchor or paid_on  # type: ignore[return-value]
        if billing_type in CYCLE_BILLING_TYPES and previous is not None:
            return next_cycle_end(previous, anchor), anchor or paid_on  # type: ignore[arg-type,return-value]
        return add_months(paid_on, 1), paid_on

    def _cancel_superseded(self, paid: Charge, billing_type: BillingType) -> None:
        if billing_type in PLAN_CHANGE_BILLING_TYPES:
            superseded = list(CYCLE_BILLING_TYPES)
        else:
            superseded = list(PLAN_CHANGE_BILLING_TYPES)

        for charge in self.charge_repo.get_pending_for_driver(
            UUID(str(paid.driver_id)), billing_types=superseded
        ):
            self.charge_service.cancel_charge(charge)
