"""Charge repository for data access."""

from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.models.charge import BillingType, Charge, ChargeStatus
from cyclepay.models.shared import utc_now
from cyclepay.models.subscription import Subscription, SubscriptionStatus


class ChargeRepository:
    """Repository for subscription Charge model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, charge_id: UUID) -> Charge | None:
        return self.db.query(Charge).filter(Charge.id == charge_id).first()

    def get_by_external_id(self, external_id: str) -> Charge | None:
        return self.db.query(Charge).filter(Charge.external_id == external_id).first()

    def create(
        self,
        subscription_id: UUID,
        driver_id: UUID,
        amount: Decimal,
        billing_type: BillingType,
        due_date: date,
    ) -> Charge:
        charge = Charge(
            subscription_id=subscription_id,
            driver_id=driver_id,
            amount=amount,
            billing_type=billing_type.value,
            due_date=due_date,
            status=ChargeStatus.PENDING.value,
        )
        self.db.add(charge)
        self.db.commit()
        self.db.refresh(charge)
        return charge

    def mark_paid_if_pending(
        self,
        charge_id: UUID,
        paid_amount: Decimal,
        paid_at: datetime,
        cycle_end: date | None = None,
        anchor_date: date | None = None,
    ) -> bool:
        """Transition pending -> paid in a single guarded write.

        The cycle the payment applies to is stored in the same write, so an
        interrupted confirmation can be finished with the same values.

        Returns False when the charge was not pending (already paid or cancelled).
        """
        updated = (
            self.db.query(Charge)
            .filter(Charge.id == charge_id, Charge.status == ChargeStatus.PENDING.value)
            .update(
                {
                    "status": ChargeStatus.PAID.value,
                    "paid_amount": paid_amount,
                    "paid_at": paid_at,
                    "applied_cycle_end": cycle_end,
                    "applied_anchor_date": anchor_date,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return bool(updated)

    def mark_reconciled(self, charge_id: UUID) -> bool:
        """Record that every effect of a paid charge was applied. Wins only once."""
        updated = (
            self.db.query(Charge)
            .filter(
                Charge.id == charge_id,
                Charge.status == ChargeStatus.PAID.value,
                Charge.reconciled_at.is_(None),
            )
            .update({"reconciled_at": utc_now()}, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    def cancel_if_pending(self, charge_id: UUID, purged: bool = False) -> bool:
        now = utc_now()
        values: dict[str, object] = {"status": ChargeStatus.CANCELLED.value, "cancelled_at": now}
        if purged:
            values["purged_at"] = now
        updated = (
            self.db.query(Charge)
            .filter(Charge.id == charge_id, Charge.status == ChargeStatus.PENDING.value)
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    def clear_purge_marker(self, charge_id: UUID) -> None:
        self.db.query(Charge).filter(Charge.id == charge_id).update(
            {"purged_at": None}, synchronize_session=False
        )
        self.db.commit()

    def get_pending_for_subscription(
        self,
        subscription_id: UUID,
        billing_types: Iterable[BillingType] | None = None,
    ) -> list[Charge]:
        query = self.db.query(Charge).filter(
            Charge.subscription_id == subscription_id,
            Charge.status == ChargeStatus.PENDING.value,
        )
        if billing_types is not None:
            query = query.filter(Charge.billing_type.in_([bt.value for bt in billing_types]))
        return query.order_by(Charge.due_date.asc()).all()

    def get_pending_for_driver(
        self,
        driver_id: UUID,
        billing_types: Iterable[BillingType] | None = None,
        due_after: date | None = None,
        exclude_subscription_id: UUID | None = None,
    ) -> list[Charge]:
        query = self.db.query(Charge).filter(
            Charge.driver_id == driver_id,
            Charge.status == ChargeStatus.PENDING.value,
        )
        if billing_types is not None:
            query = query.filter(Charge.billing_type.in_([bt.value for bt in billing_types]))
        if due_after is not None:
            query = query.filter(Charge.due_date > due_after)
        if exclude_subscription_id is not None:
            query = query.filter(Charge.subscription_id != exclude_subscription_id)
        return query.order_by(Charge.due_date.asc()).all()

    def get_purged_for_driver(self, driver_id: UUID) -> list[Charge]:
        return (
            self.db.query(Charge)
            .filter(
                Charge.driver_id == driver_id,
                Charge.status == ChargeStatus.CANCELLED.value,
                Charge.purged_at.isnot(None),
            )
            .order_by(Charge.due_date.asc())
            .all()
        )

    def open_renewal_exists(self, subscription_id: UUID, due_date: date) -> bool:
        """Whether a non-cancelled renewal already covers the cycle ending on ``due_date``."""
        return (
            self.db.query(Charge)
            .filter(
                Charge.subscription_id == subscription_id,
                Charge.billing_type.in_(
                    [BillingType.RENEWAL.value, BillingType.DOWNGRADE.value]
                ),
                Charge.due_date == due_date,
                Charge.status != ChargeStatus.CANCELLED.value,
            )
            .first()
            is not None
        )

    def get_overdue_for_live_subscriptions(self, as_of: date) -> list[Charge]:
        """Unpaid cycle (renewal, downgrade) or activation charges past due on a live row."""
        return (
            self.db.query(Charge)
            .join(Subscription, Subscription.id == Charge.subscription_id)
            .filter(
                Charge.status == ChargeStatus.PENDING.value,
                Charge.due_date < as_of,
                Charge.billing_type.in_(
                    [
                        BillingType.RENEWAL.value,
                        BillingType.DOWNGRADE.value,
                        BillingType.ACTIVATION.value,
                    ]
                ),
                Subscription.active.is_(True),
                Subscription.status.in_(
                    [
                        SubscriptionStatus.ACTIVE.value,
                        SubscriptionStatus.TRIAL.value,
                        SubscriptionStatus.PENDING_PAYMENT.value,
                    ]
                ),
            )
            .all()
        )

    def set_instruction(
        self,
        charge_id: UUID,
        external_id: str,
        payment_instruction: str,
        instruction_url: str | None,
        instruction_kind: str,
        expires_at: datetime | None,
        attempts: int,
    ) -> Charge | None:
        charge = self.get_by_id(charge_id)
        if not charge:
            return None
        charge.external_id = external_id  # type: ignore[assignment]
        charge.payment_instruction = payment_instruction  # type: ignore[assignment]
        charge.instruction_url = instruction_url  # type: ignore[assignment]
        charge.instruction_kind = instruction_kind  # type: ignore[assignment]
        charge.instruction_expires_at = expires_at  # type: ignore[assignment]
        charge.instruction_attempts = attempts  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(charge)
        return charge
