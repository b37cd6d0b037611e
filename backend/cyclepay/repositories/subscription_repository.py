"""Subscription repository for data access."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.models.shared import utc_now
from cyclepay.models.subscription import PriceOrigin, Subscription, SubscriptionStatus


class SubscriptionRepository:
    """Repository for Subscription model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, subscription_id: UUID) -> Subscription | None:
        return self.db.query(Subscription).filter(Subscription.id == subscription_id).first()

    def get_active_for_driver(self, driver_id: UUID) -> Subscription | None:
        """Get the single ``active=true`` subscription of a driver, if any."""
        return (
            self.db.query(Subscription)
            .filter(Subscription.driver_id == driver_id, Subscription.active.is_(True))
            .order_by(Subscription.created_at.desc())
            .first()
        )

    def get_unpaid_pending_for_driver(self, driver_id: UUID) -> list[Subscription]:
        """Get inactive rows still waiting for their first payment (abandoned plan changes)."""
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.driver_id == driver_id,
                Subscription.active.is_(False),
                Subscription.status == SubscriptionStatus.PENDING_PAYMENT.value,
            )
            .all()
        )

    def create(
        self,
        driver_id: UUID,
        plan_id: UUID,
        status: SubscriptionStatus,
        active: bool,
        applied_price: Decimal,
        price_origin: PriceOrigin = PriceOrigin.NORMAL,
        contracted_quota: int | None = None,
        anchor_date: date | None = None,
        cycle_end: date | None = None,
        trial_end: date | None = None,
    ) -> Subscription:
        subscription = Subscription(
            driver_id=driver_id,
            plan_id=plan_id,
            status=status.value,
            active=active,
            applied_price=applied_price,
            price_origin=price_origin.value,
            contracted_quota=contracted_quota,
            anchor_date=anchor_date,
            cycle_end=cycle_end,
            trial_end=trial_end,
        )
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def update_fields(self, subscription_id: UUID, **fields: Any) -> Subscription | None:
        subscription = self.get_by_id(subscription_id)
        if not subscription:
            return None
        for key, value in fields.items():
            setattr(subscription, key, value)
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def deactivate_if_current(
        self,
        subscription_id: UUID,
        expected_cycle_end: date | None,
        expected_plan_id: UUID,
    ) -> bool:
        """Deactivate a row only if it is still the active row with the state the caller read.

        Returns False when another writer changed the row in the meantime.
        """
        updated = (
            self.db.query(Subscription)
            .filter(
                Subscription.id == subscription_id,
                Subscription.active.is_(True),
                Subscription.plan_id == expected_plan_id,
                Subscription.cycle_end.is_(None)
                if expected_cycle_end is None
                else Subscription.cycle_end == expected_cycle_end,
            )
            .update({"active": False}, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    def deactivate_others(self, driver_id: UUID, keep_id: UUID) -> list[UUID]:
        """Flip ``active`` off on every other row of the driver. Returns the affected ids."""
        others = (
            self.db.query(Subscription)
            .filter(
                Subscription.driver_id == driver_id,
                Subscription.id != keep_id,
                Subscription.active.is_(True),
            )
            .all()
        )
        ids = [UUID(str(s.id)) for s in others]
        if ids:
            self.db.query(Subscription).filter(Subscription.id.in_(ids)).update(
                {"active": False}, synchronize_session=False
            )
            self.db.commit()
        return ids

    def activate(
        self,
        subscription_id: UUID,
        cycle_end: date | None,
        anchor_date: date | None,
    ) -> Subscription | None:
        """Make a row the driver's live subscription."""
        return self.update_fields(
            subscription_id,
            status=SubscriptionStatus.ACTIVE.value,
            active=True,
            cycle_end=cycle_end,
            anchor_date=anchor_date,
            trial_end=None,
            suspended_at=None,
        )

    def suspend_if_live(self, subscription_id: UUID, now: datetime) -> bool:
        """Suspend a row unless it is already suspended or cancelled."""
        updated = (
            self.db.query(Subscription)
            .filter(
                Subscription.id == subscription_id,
                Subscription.status.in_(
                    [
                        SubscriptionStatus.ACTIVE.value,
                        SubscriptionStatus.TRIAL.value,
                        SubscriptionStatus.PENDING_PAYMENT.value,
                    ]
                ),
            )
            .update(
                {
                    "status": SubscriptionStatus.SUSPENDED.value,
                    "active": False,
                    "suspended_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return bool(updated)

    def cancel(self, subscription_id: UUID, now: datetime | None = None) -> Subscription | None:
        return self.update_fields(
            subscription_id,
            status=SubscriptionStatus.CANCELLED.value,
            active=False,
            cancelled_at=now or utc_now(),
        )

    def get_renewable(self, cycle_end: date) -> list[Subscription]:
        """Active rows whose cycle ends on the given date and are not being cancelled."""
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.active.is_(True),
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.cycle_end == cycle_end,
                Subscription.cancellation_requested_at.is_(None),
            )
            .all()
        )

    def get_expired_trials(self, as_of: date) -> list[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.active.is_(True),
                Subscription.status == SubscriptionStatus.TRIAL.value,
                Subscription.trial_end.isnot(None),
                Subscription.trial_end <= as_of,
            )
            .all()
        )

    def get_due_cancellations(self, as_of: date) -> list[Subscription]:
        """Rows with a scheduled cancellation whose paid-through date has passed."""
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.active.is_(True),
                Subscription.cancellation_requested_at.isnot(None),
                Subscription.status != SubscriptionStatus.CANCELLED.value,
                Subscription.cycle_end.isnot(None),
                Subscription.cycle_end < as_of,
            )
            .all()
        )

    def get_suspended(self) -> list[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.status == SubscriptionStatus.SUSPENDED.value)
            .all()
        )

    def get_billing_candidates(self) -> list[Subscription]:
        """Live rows (active or trial) without a scheduled cancellation."""
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.active.is_(True),
                Subscription.status.in_(
                    [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIAL.value]
                ),
                Subscription.cancellation_requested_at.is_(None),
            )
            .all()
        )
