"""Subscription state machine: enrollment, trials, upgrades, downgrades, quota and cancellation."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.core.errors import ConflictError, NotFoundError, ValidationError
from cyclepay.models.charge import BillingType, Charge
from cyclepay.models.notification import NotificationType
from cyclepay.models.passenger import PassengerDisabledReason
from cyclepay.models.plan import Plan, PlanSlug
from cyclepay.models.shared import to_money, utc_now, utc_today
from cyclepay.models.subscription import PriceOrigin, Subscription, SubscriptionStatus
from cyclepay.repositories.charge_repository import ChargeRepository
from cyclepay.repositories.driver_repository import DriverRepository
from cyclepay.repositories.passenger_repository import PassengerRepository
from cyclepay.repositories.plan_repository import PlanRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.charge_service import ChargeService
from cyclepay.services.config_service import ConfigKey, ConfigService
from cyclepay.services.notification_service import NotificationService
from cyclepay.services.passenger_billing import PassengerBillingService
from cyclepay.services.payment_gateway import PixGatewayBase
from cyclepay.services.plan_rules import effective_plan_slug, is_upgrade
from cyclepay.services.pricing import (
    compute_custom_quota_price,
    compute_pro_rata,
    compute_standard_price,
    tiers_from_plans,
)
from cyclepay.services.subscription_dates import next_month

logger = logging.getLogger(__name__)


class PlanChangeKind(str, Enum):
    ENROLLED = "enrolled"
    TRIAL = "trial"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    SUB_PLAN = "sub_plan"
    QUOTA = "quota"


@dataclass
class PlanChangeResult:
    kind: PlanChangeKind
    subscription: Subscription
    charge: Charge | None = None

    @property
    def requires_payment(self) -> bool:
        return self.charge is not None and not bool(self.subscription.active)


class SubscriptionLifecycleService:
    """Service for managing subscription lifecycle events."""

    def __init__(self, db: Session, gateway: PixGatewayBase | None = None):
        self.db = db
        self.subscription_repo = SubscriptionRepository(db)
        self.plan_repo = PlanRepository(db)
        self.driver_repo = DriverRepository(db)
        self.passenger_repo = PassengerRepository(db)
        self.charge_repo = ChargeRepository(db)
        self.charge_service = ChargeService(db, gateway)
        self.passenger_billing = PassengerBillingService(db, gateway)
        self.notification_service = NotificationService(db)
        self.config = ConfigService(db)

    def get_active_subscription(self, driver_id: UUID) -> Subscription | None:
        """The driver's live row, or None when the driver has no subscription."""
        return self.subscription_repo.get_active_for_driver(driver_id)

    def change_plan(
        self, driver_id: UUID, plan_id: UUID, now: datetime | None = None
    ) -> PlanChangeResult:
        """Move a driver to another plan.

        1. Discard plan changes the driver started but never paid
        2. Moving to essential from free (or from nothing) starts a trial
        3. Within professional, a tier change is a sub-plan change
        4. Otherwise the change is classified as upgrade or downgrade
        """
        now = now or utc_now()
        if not self.driver_repo.get_by_id(driver_id):
            raise NotFoundError(f"Driver {driver_id} not found")
        new_plan = self.plan_repo.get_by_id(plan_id)
        if not new_plan or not new_plan.active:
            raise NotFoundError(f"Plan {plan_id} not found")

        current = self.get_active_subscription(driver_id)
        if current is not None and str(current.plan_id) == str(plan_id):
            raise ConflictError("Driver is already on this plan", details={"plan_id": str(plan_id)})

        self._discard_unpaid_changes(driver_id)

        new_slug = effective_plan_slug(new_plan)
        current_slug = effective_plan_slug(current.plan) if current is not None else None

        if current is None and new_slug == PlanSlug.FREE.value:
            return self._enroll_free(driver_id, new_plan)
        if new_slug == PlanSlug.ESSENTIAL.value and current_slug in (None, PlanSlug.FREE.value):
            return self._start_trial(driver_id, current, new_plan, now)
        if (
            current is not None
            and current_slug == PlanSlug.PROFESSIONAL.value
            and new_slug == PlanSlug.PROFESSIONAL.value
        ):
            return self._change_sub_plan(current, new_plan, now)

        price = compute_standard_price(new_plan)
        if current is None or is_upgrade(
            current.plan,
            Decimal(str(current.applied_price)),
            current.contracted_quota,
            new_plan,
            price.amount,
            new_plan.quota,
        ):
            return self._upgrade(driver_id, current, new_plan, now)
        return self._downgrade(current, new_plan, now)

    def change_quota(
        self, driver_id: UUID, quota: int, now: datetime | None = None
    ) -> PlanChangeResult:
        """Contract a custom passenger quota on the professional plan."""
        now = now or utc_now()
        current = self.get_active_subscription(driver_id)
        if current is None or effective_plan_slug(current.plan) != PlanSlug.PROFESSIONAL.value:
            raise ValidationError("Custom quotas require an active professional subscription")

        committed = int(current.contracted_quota or 0)
        if quota == committed:
            raise ValidationError("Quota is unchanged", details={"quota": quota})
        if quota < committed:
            raise ConflictError(
                "Quota cannot be reduced below the contracted quota",
                details={"quota": quota, "contracted_quota": committed},
            )

        base_plan = current.plan.parent or current.plan
        tiers = tiers_from_plans(self.plan_repo.get_sub_plans(UUID(str(base_plan.id))))
        overage = self.config.get_decimal(ConfigKey.OVERAGE_RATE_PER_UNIT)
        price = compute_custom_quota_price(quota, tiers, overage)

        self._discard_unpaid_changes(driver_id)
        return self._bill_expansion(
            current,
            plan_id=UUID(str(current.plan_id)),
            price=price,
            origin=PriceOrigin.CUSTOM,
            quota=quota,
            kind=PlanChangeKind.QUOTA,
            now=now,
        )

    def process_trial_end(self, subscription: Subscription) -> Charge | None:
        """Move an expired trial to pending_payment, making sure its activation charge exists."""
        subscription_id = UUID(str(subscription.id))
        charge = next(
            iter(
                self.charge_repo.get_pending_for_subscription(
                    subscription_id, [BillingType.ACTIVATION]
                )
            ),
            None,
        )
        if charge is None and Decimal(str(subscription.applied_price)) > 0:
            charge = self.charge_service.create_subscription_charge(
                subscription,
                Decimal(str(subscription.applied_price)),
                BillingType.ACTIVATION,
                subscription.trial_end or utc_today(),  # type: ignore[arg-type]
            )
        self.subscription_repo.update_fields(
            subscription_id, status=SubscriptionStatus.PENDING_PAYMENT.value
        )
        logger.info("Trial of subscription %s ended, awaiting payment", subscription_id)
        return charge

    def schedule_cancellation(self, driver_id: UUID, now: datetime | None = None) -> Subscription:
        """Request cancellation at the end of the paid cycle.

        Charges due after the paid-through date are purged and their
        instructions invalidated at the gateway.
        """
        now = now or utc_now()
        current = self.get_active_subscription(driver_id)
        if current is None:
            raise NotFoundError(f"Driver {driver_id} has no active subscription")
        if current.cancellation_requested_at is not None:
            raise ConflictError("Cancellation is already scheduled")

        updated = self.subscription_repo.update_fields(
            UUID(str(current.id)),
            cancellation_requested_at=now,
            previous_status=current.status,
        )
        self.charge_service.purge_future_charges(driver_id, current.cycle_end)  # type: ignore[arg-type]
        logger.info("Cancellation of subscription %s scheduled", current.id)
        return updated or current

    def undo_cancellation(self, driver_id: UUID, today: date | None = None) -> Subscription:
        """Withdraw a scheduled cancellation and bring back the purged charges."""
        today = today or utc_today()
        current = self.get_active_subscription(driver_id)
        if current is None or current.cancellation_requested_at is None:
            raise ConflictError("No cancellation is scheduled")

        updated = self.subscription_repo.update_fields(
            UUID(str(current.id)),
            status=current.previous_status or current.status,
            cancellation_requested_at=None,
            previous_status=None,
        )
        self.charge_service.restore_purged_charges(driver_id)

        # charges skipped by this month's generation run while the cancellation was pending
        if today.day >= self.config.get_int(ConfigKey.RENEWAL_GENERATION_DAY):
            month, year = next_month(today)
            self.passenger_billing.generate_for_driver(driver_id, month, year)

        logger.info("Cancellation of subscription %s withdrawn", current.id)
        return updated or current

    def suspend(self, subscription: Subscription, now: datetime | None = None) -> bool:
        if not self.subscription_repo.suspend_if_live(UUID(str(subscription.id)), now or utc_now()):
            return False
        self.notification_service.enqueue(
            UUID(str(subscription.driver_id)),
            NotificationType.SUBSCRIPTION_SUSPENDED,
            {"subscription_id": str(subscription.id)},
        )
        logger.info("Subscription %s suspended", subscription.id)
        return True

    def cancel(self, subscription: Subscription, now: datetime | None = None) -> Subscription:
        cancelled = self.subscription_repo.cancel(UUID(str(subscription.id)), now)
        self.notification_service.enqueue(
            UUID(str(subscription.driver_id)),
            NotificationType.SUBSCRIPTION_CANCELLED,
            {"subscription_id": str(subscription.id)},
        )
        logger.info("Subscription %s cancelled", subscription.id)
        return cancelled or subscription

    def _enroll_free(self, driver_id: UUID, plan: Plan) -> PlanChangeResult:
        subscription = self.subscription_repo.create(
            driver_id=driver_id,
            plan_id=UUID(str(plan.id)),
            status=SubscriptionStatus.ACTIVE,
            active=True,
            applied_price=Decimal("0.00"),
        )
        return PlanChangeResult(PlanChangeKind.ENROLLED, subscription)

    def _start_trial(
        self,
        driver_id: UUID,
        current: Subscription | None,
        plan: Plan,
        now: datetime,
    ) -> PlanChangeResult:
        trial_end = now.date() + timedelta(days=self.config.get_int(ConfigKey.TRIAL_DAYS))
        price = compute_standard_price(plan)
        subscription = self.subscription_repo.create(
            driver_id=driver_id,
            plan_id=UUID(str(plan.id)),
            status=SubscriptionStatus.TRIAL,
            active=True,
            applied_price=price.amount,
            price_origin=price.origin,
            trial_end=trial_end,
        )
        if current is not None:
            self.subscription_repo.deactivate_others(driver_id, UUID(str(subscription.id)))
            self.charge_service.cancel_pending_for_subscription(UUID(str(current.id)))

        charge = None
        if price.amount > 0:
            charge = self.charge_service.create_subscription_charge(
                subscription, price.amount, BillingType.ACTIVATION, trial_end
            )
        logger.info("Driver %s started a trial ending %s", driver_id, trial_end)
        return PlanChangeResult(PlanChangeKind.TRIAL, subscription, charge)

    def _upgrade(
        self,
        driver_id: UUID,
        current: Subscription | None,
        plan: Plan,
        now: datetime,
    ) -> PlanChangeResult:
        price = compute_standard_price(plan)
        if current is None:
            subscription = self.subscription_repo.create(
                driver_id=driver_id,
                plan_id=UUID(str(plan.id)),
                status=SubscriptionStatus.PENDING_PAYMENT,
                active=False,
                applied_price=price.amount,
                price_origin=price.origin,
                contracted_quota=plan.quota,
            )
            charge = self.charge_service.create_subscription_charge(
                subscription, price.amount, BillingType.ACTIVATION, now.date()
            )
            return PlanChangeResult(PlanChangeKind.UPGRADE, subscription, charge)

        return self._bill_expansion(
            current,
            plan_id=UUID(str(plan.id)),
            price=price.amount,
            origin=price.origin,
            quota=plan.quota,
            kind=PlanChangeKind.UPGRADE,
            now=now,
            billing_type=BillingType.UPGRADE,
        )

    def _change_sub_plan(
        self, current: Subscription, plan: Plan, now: datetime
    ) -> PlanChangeResult:
        committed = int(current.contracted_quota or 0)
        if plan.quota is not None and int(plan.quota) < committed:
            raise ConflictError(
                "Tier quota is below the contracted quota",
                details={"quota": plan.quota, "contracted_quota": committed},
            )
        price = compute_standard_price(plan)
        return self._bill_expansion(
            current,
            plan_id=UUID(str(plan.id)),
            price=price.amount,
            origin=price.origin,
            quota=plan.quota,
            kind=PlanChangeKind.SUB_PLAN,
            now=now,
        )

    def _bill_expansion(
        self,
        current: Subscription,
        plan_id: UUID,
        price: Decimal,
        origin: PriceOrigin,
        quota: int | None,
        kind: PlanChangeKind,
        now: datetime,
        billing_type: BillingType = BillingType.EXPANSION,
    ) -> PlanChangeResult:
        """Insert a pending row for a more expensive configuration and bill the difference.

        With a live cycle the pro-rated delta is billed and the cycle is kept;
        without one the full price is billed as an activation. A change that
        costs nothing swaps rows right away.
        """
        live_cycle = self._live_cycle_end(current, now.date())
        if live_cycle is not None:
            delta = price - Decimal(str(current.applied_price))
            amount = compute_pro_rata(
                delta,
                live_cycle,
                min_charge=self.config.get_decimal(ConfigKey.PRO_RATA_MIN_CHARGE),
                cycle_length_days=self.config.get_int(ConfigKey.PRO_RATA_CYCLE_DAYS),
                now=now,
            )
        else:
            billing_type = BillingType.ACTIVATION
            amount = price

        if amount <= 0:
            subscription = self._swap_rows(current, plan_id, price, origin, quota)
            return PlanChangeResult(kind, subscription)

        subscription = self.subscription_repo.create(
            driver_id=UUID(str(current.driver_id)),
            plan_id=plan_id,
            status=SubscriptionStatus.PENDING_PAYMENT,
            active=False,
            applied_price=to_money(price),
            price_origin=origin,
            contracted_quota=quota,
            anchor_date=current.anchor_date if live_cycle else None,  # type: ignore[arg-type]
            cycle_end=live_cycle,
        )
        charge = self.charge_service.create_subscription_charge(
            subscription, amount, billing_type, now.date()
        )
        logger.info(
            "Driver %s %s pending: %s %s",
            current.driver_id,
            kind.value,
            billing_type.value,
            amount,
        )
        return PlanChangeResult(kind, subscription, charge)

    def _downgrade(
        self, current: Subscription, plan: Plan, now: datetime
    ) -> PlanChangeResult:
        """Switch to a cheaper plan right away, keeping the paid cycle.

        The new price is billed at the end of the current cycle.
        """
        committed = current.contracted_quota
        if plan.quota is not None and committed is not None and int(plan.quota) < int(committed):
            raise ConflictError(
                "Quota cannot be reduced below the contracted quota",
                details={"quota": plan.quota, "contracted_quota": committed},
            )

        price = compute_standard_price(plan)
        subscription = self._swap_rows(
            current, UUID(str(plan.id)), price.amount, price.origin, plan.quota
        )

        charge = None
        if price.amount > 0 and current.cycle_end is not None:
            due = max(current.cycle_end, now.date())  # type: ignore[type-var]
            charge = self.charge_service.create_subscription_charge(
                subscription, price.amount, BillingType.DOWNGRADE, due
            )

        if (
            effective_plan_slug(current.plan) == PlanSlug.PROFESSIONAL.value
            and effective_plan_slug(plan) != PlanSlug.PROFESSIONAL.value
        ):
            disabled = self.passenger_repo.disable_auto_billing(
                UUID(str(current.driver_id)), PassengerDisabledReason.PLAN
            )
            logger.info("Disabled automatic billing for %d passengers", disabled)

        logger.info("Driver %s downgraded to %s", current.driver_id, plan.slug)
        return PlanChangeResult(PlanChangeKind.DOWNGRADE, subscription, charge)

    def _swap_rows(
        self,
        current: Subscription,
        plan_id: UUID,
        price: Decimal,
        origin: PriceOrigin,
        quota: int | None,
    ) -> Subscription:
        """Replace the live row with a new active one on the same cycle."""
        current_id = UUID(str(current.id))
        if not self.subscription_repo.deactivate_if_current(
            current_id, current.cycle_end, UUID(str(current.plan_id))  # type: ignore[arg-type]
        ):
            raise ConflictError("Subscription changed while the plan change was in progress")

        self.charge_service.cancel_pending_for_subscription(current_id)
        return self.subscription_repo.create(
            driver_id=UUID(str(current.driver_id)),
            plan_id=plan_id,
            status=SubscriptionStatus.ACTIVE,
            active=True,
            applied_price=to_money(price),
            price_origin=origin,
            contracted_quota=quota,
            anchor_date=current.anchor_date,  # type: ignore[arg-type]
            cycle_end=current.cycle_end,  # type: ignore[arg-type]
        )

    def _discard_unpaid_changes(self, driver_id: UUID) -> None:
        for stale in self.subscription_repo.get_unpaid_pending_for_driver(driver_id):
            stale_id = UUID(str(stale.id))
            self.charge_service.cancel_pending_for_subscription(stale_id)
            self.subscription_repo.update_fields(stale_id, status=SubscriptionStatus.CANCELLED.value)
            logger.info("Discarded unpaid plan change %s", stale_id)

    @staticmethod
    def _live_cycle_end(subscription: Subscription, today: date) -> date | None:
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            return None
        if subscription.cycle_end is None or subscription.cycle_end < today:  # type: ignore[operator]
            return None
        return subscription.cycle_end  # type: ignore[return-value]
