"""Tests for the subscription state machine."""

from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal

import pytest

from cyclepay.core.errors import ConflictError, NotFoundError, ValidationError
from cyclepay.models.charge import BillingType, ChargeStatus
from cyclepay.models.notification import NotificationType
from cyclepay.models.passenger import PassengerDisabledReason
from cyclepay.models.shared import generate_uuid, utc_today
from cyclepay.models.subscription import PriceOrigin, SubscriptionStatus
from cyclepay.repositories.charge_repository import ChargeRepository
from cyclepay.repositories.notification_repository import NotificationRepository
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.repositories.passenger_repository import PassengerRepository
from cyclepay.repositories.plan_repository import PlanRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.subscription_lifecycle import PlanChangeKind, SubscriptionLifecycleService


@pytest.fixture
def service(db_session, gateway):
    return SubscriptionLifecycleService(db_session, gateway)


@pytest.fixture
def now():
    """Midnight today, so pro-rata day counts are whole."""
    return datetime.combine(utc_today(), time.min, tzinfo=UTC)


class TestEnrollment:
    def test_free_plan_enrolls_directly(self, service, driver, plans):
        result = service.change_plan(driver.id, plans["free"].id)

        assert result.kind == PlanChangeKind.ENROLLED
        assert result.charge is None
        assert not result.requires_payment
        assert result.subscription.active
        assert result.subscription.status == SubscriptionStatus.ACTIVE.value
        assert service.get_active_subscription(driver.id).id == result.subscription.id

    def test_essential_starts_trial(self, service, driver, plans, now):
        result = service.change_plan(driver.id, plans["essential"].id, now=now)

        trial_end = now.date() + timedelta(days=7)
        assert result.kind == PlanChangeKind.TRIAL
        assert result.subscription.status == SubscriptionStatus.TRIAL.value
        assert result.subscription.active
        assert result.subscription.trial_end == trial_end
        assert result.charge.billing_type == BillingType.ACTIVATION.value
        assert result.charge.due_date == trial_end
        assert result.charge.amount == Decimal("49.90")
        assert not result.requires_payment

    def test_essential_from_free_replaces_free_row(self, service, driver, plans, make_subscription):
        free = make_subscription(plans["free"])
        result = service.change_plan(driver.id, plans["essential"].id)

        assert result.kind == PlanChangeKind.TRIAL
        assert not SubscriptionRepository(service.db).get_by_id(free.id).active
        assert service.get_active_subscription(driver.id).id == result.subscription.id

    def test_paid_plan_without_subscription_needs_payment(self, service, driver, plans, now):
        result = service.change_plan(driver.id, plans["pro_10"].id, now=now)

        assert result.kind == PlanChangeKind.UPGRADE
        assert result.requires_payment
        assert not result.subscription.active
        assert result.subscription.status == SubscriptionStatus.PENDING_PAYMENT.value
        assert result.subscription.contracted_quota == 10
        assert result.charge.billing_type == BillingType.ACTIVATION.value
        assert result.charge.amount == Decimal("100.00")
        assert result.charge.due_date == now.date()
        assert service.get_active_subscription(driver.id) is None

    def test_promotional_price_is_applied(self, service, driver, db_session):
        plan = PlanRepository(db_session).create(
            slug="essential",
            name="Essential",
            price=Decimal("49.90"),
            promotional_price=Decimal("29.90"),
            promotion_active=True,
        )
        result = service.change_plan(driver.id, plan.id)
        assert result.subscription.applied_price == Decimal("29.90")
        assert result.subscription.price_origin == PriceOrigin.PROMOTIONAL.value

    def test_unknown_driver(self, service, plans):
        with pytest.raises(NotFoundError):
            service.change_plan(generate_uuid(), plans["free"].id)

    def test_unknown_plan(self, service, driver, plans):
        with pytest.raises(NotFoundError):
            service.change_plan(driver.id, generate_uuid())

    def test_same_plan_conflicts(self, service, driver, plans, make_subscription):
        make_subscription(plans["essential"])
        with pytest.raises(ConflictError):
            service.change_plan(driver.id, plans["essential"].id)


class TestUpgrade:
    def test_upgrade_bills_pro_rata_delta(self, service, driver, plans, make_subscription, now):
        cycle_end = now.date() + timedelta(days=15)
        current = make_subscription(plans["essential"], cycle_end=cycle_end, anchor_date=now.date())

        result = service.change_plan(driver.id, plans["pro_10"].id, now=now)

        # (100.00 - 49.90) / 30 * 15
        assert result.kind == PlanChangeKind.UPGRADE
        assert result.requires_payment
        assert result.charge.billing_type == BillingType.UPGRADE.value
        assert result.charge.amount == Decimal("25.05")
        assert result.subscription.cycle_end == cycle_end
        assert result.subscription.applied_price == Decimal("100.00")
        assert not result.subscription.active
        # the paid cycle keeps running on the current row until the upgrade is paid
        assert service.get_active_subscription(driver.id).id == current.id

    def test_upgrade_from_free_bills_full_price(self, service, driver, plans, make_subscription, now):
        make_subscription(plans["free"])
        result = service.change_plan(driver.id, plans["essential"].id, now=now)
        assert result.kind == PlanChangeKind.TRIAL

        result = service.change_plan(driver.id, plans["pro_10"].id, now=now)
        assert result.kind == PlanChangeKind.UPGRADE
        assert result.charge.billing_type == BillingType.ACTIVATION.value
        assert result.charge.amount == Decimal("100.00")

    def test_unpaid_change_is_discarded_by_the_next_one(
        self, service, driver, plans, make_subscription, now
    ):
        make_subscription(plans["essential"], cycle_end=now.date() + timedelta(days=15))
        first = service.change_plan(driver.id, plans["pro_10"].id, now=now)
        second = service.change_plan(driver.id, plans["pro_20"].id, now=now)

        subscriptions = SubscriptionRepository(service.db)
        charges = ChargeRepository(service.db)
        assert subscriptions.get_by_id(first.subscription.id).status == "cancelled"
        assert charges.get_by_id(first.charge.id).status == ChargeStatus.CANCELLED.value
        assert charges.get_by_id(second.charge.id).status == ChargeStatus.PENDING.value


class TestSubPlanAndQuota:
    def test_tier_upgrade(self, service, driver, plans, make_subscription, now):
        make_subscription(plans["pro_10"], cycle_end=now.date() + timedelta(days=15))
        result = service.change_plan(driver.id, plans["pro_20"].id, now=now)

        assert result.kind == PlanChangeKind.SUB_PLAN
        assert result.charge.billing_type == BillingType.EXPANSION.value
        assert result.charge.amount == Decimal("40.00")
        assert result.subscription.contracted_quota == 20

    def test_tier_below_contracted_quota_conflicts(
        self, service, driver, plans, make_subscription, now
    ):
        make_subscription(plans["pro_20"], cycle_end=now.date() + timedelta(days=15))
        with pytest.raises(ConflictError):
            service.change_plan(driver.id, plans["pro_10"].id, now=now)

    def test_custom_quota(self, service, driver, plans, make_subscription, now):
        make_subscription(plans["pro_10"], cycle_end=now.date() + timedelta(days=15))
        result = service.change_quota(driver.id, 15, now=now)

        # 15 * 180 / 20 = 135.00; (135.00 - 100.00) / 30 * 15
        assert result.kind == PlanChangeKind.QUOTA
        assert result.subscription.applied_price == Decimal("135.00")
        assert result.subscription.price_origin == PriceOrigin.CUSTOM.value
        assert result.subscription.contracted_quota == 15
        assert result.charge.amount == Decimal("17.50")

    def test_custom_quota_without_live_cycle_bills_full_price(
        self, service, driver, plans, make_subscription, now
    ):
        make_subscription(plans["pro_10"])
        result = service.change_quota(driver.id, 24, now=now)
        assert result.charge.billing_type == BillingType.ACTIVATION.value
        assert result.charge.amount == Decimal("190.00")

    def test_quota_cannot_shrink(self, service, driver, plans, make_subscription):
        make_subscription(plans["pro_20"])
        with pytest.raises(ConflictError):
            service.change_quota(driver.id, 10)

    def test_unchanged_quota(self, service, driver, plans, make_subscription):
        make_subscription(plans["pro_10"])
        with pytest.raises(ValidationError):
            service.change_quota(driver.id, 10)

    def test_quota_requires_professional(self, service, driver, plans, make_subscription):
        make_subscription(plans["essential"])
        with pytest.raises(ValidationError):
            service.change_quota(driver.id, 5)


class TestDowngrade:
    def test_downgrade_swaps_rows_and_bills_at_cycle_end(
        self, service, driver, plans, make_subscription, make_passenger, now
    ):
        cycle_end = now.date() + timedelta(days=15)
        current = make_subscription(plans["pro_10"], cycle_end=cycle_end, anchor_date=now.date())
        passenger = make_passenger(auto_billing=True)

        result = service.change_plan(driver.id, plans["essential"].id, now=now)

        assert result.kind == PlanChangeKind.DOWNGRADE
        assert not result.requires_payment
        assert result.subscription.active
        assert result.subscription.cycle_end == cycle_end
        assert result.subscription.applied_price == Decimal("49.90")
        assert result.charge.billing_type == BillingType.DOWNGRADE.value
        assert result.charge.due_date == cycle_end
        assert not SubscriptionRepository(service.db).get_by_id(current.id).active

        refreshed = PassengerRepository(service.db).get_by_id(passenger.id)
        assert not refreshed.auto_billing
        assert refreshed.auto_billing_disabled_reason == PassengerDisabledReason.PLAN.value

    def test_downgrade_to_free_has_no_charge(self, service, driver, plans, make_subscription, now):
        make_subscription(plans["essential"], cycle_end=now.date() + timedelta(days=15))
        result = service.change_plan(driver.id, plans["free"].id, now=now)
        assert result.kind == PlanChangeKind.DOWNGRADE
        assert result.charge is None
        assert result.subscription.active

    def test_downgrade_cancels_open_charges_of_old_row(
        self, service, driver, plans, make_subscription, now
    ):
        current = make_subscription(plans["pro_10"], cycle_end=now.date() + timedelta(days=15))
        renewal = service.charge_service.create_subscription_charge(
            current, Decimal("100.00"), BillingType.RENEWAL, current.cycle_end
        )
        service.change_plan(driver.id, plans["essential"].id, now=now)
        charge = ChargeRepository(service.db).get_by_id(renewal.id)
        assert charge.status == ChargeStatus.CANCELLED.value


class TestTrialEnd:
    def test_trial_end_awaits_payment(self, service, driver, plans, now):
        trial = service.change_plan(driver.id, plans["essential"].id, now=now)
        charge = service.process_trial_end(trial.subscription)

        assert charge.id == trial.charge.id
        subscription = SubscriptionRepository(service.db).get_by_id(trial.subscription.id)
        assert subscription.status == SubscriptionStatus.PENDING_PAYMENT.value
        assert subscription.active

    def test_missing_activation_charge_is_recreated(self, service, driver, plans, now):
        trial = service.change_plan(driver.id, plans["essential"].id, now=now)
        service.charge_service.cancel_charge(trial.charge)

        charge = service.process_trial_end(trial.subscription)
        assert charge.id != trial.charge.id
        assert charge.billing_type == BillingType.ACTIVATION.value


class TestCancellation:
    def test_schedule_and_undo(self, service, driver, plans, make_subscription):
        today = date(2026, 3, 10)
        cycle_end = date(2026, 4, 5)
        subscription = make_subscription(plans["essential"], cycle_end=cycle_end)
        renewal = service.charge_service.create_subscription_charge(
            subscription, Decimal("49.90"), BillingType.RENEWAL, cycle_end
        )

        scheduled = service.schedule_cancellation(driver.id)
        assert scheduled.cancellation_requested_at is not None
        assert scheduled.previous_status == SubscriptionStatus.ACTIVE.value
        charges = ChargeRepository(service.db)
        assert charges.get_by_id(renewal.id).status == ChargeStatus.CANCELLED.value

        with pytest.raises(ConflictError):
            service.schedule_cancellation(driver.id)

        restored = service.undo_cancellation(driver.id, today=today)
        assert restored.cancellation_requested_at is None
        assert restored.status == SubscriptionStatus.ACTIVE.value
        renewals = charges.get_pending_for_subscription(subscription.id, [BillingType.RENEWAL])
        assert len(renewals) == 1

    def test_schedule_purges_downgrade_charge(self, service, driver, plans, make_subscription, now):
        make_subscription(plans["pro_10"], cycle_end=now.date() + timedelta(days=10))
        downgrade = service.change_plan(driver.id, plans["essential"].id, now=now)

        service.schedule_cancellation(driver.id, now=now)

        charge = ChargeRepository(service.db).get_by_id(downgrade.charge.id)
        assert charge.status == ChargeStatus.CANCELLED.value
        assert charge.purged_at is not None

    def test_undo_after_generation_day_backfills_passenger_charges(
        self, service, driver, plans, make_subscription, make_passenger
    ):
        make_subscription(plans["essential"], cycle_end=date(2026, 4, 5))
        passenger = make_passenger(due_day=10)
        service.schedule_cancellation(driver.id)

        service.undo_cancellation(driver.id, today=date(2026, 3, 26))

        assert PassengerChargeRepository(service.db).exists_for_period(passenger.id, 4, 2026)

    def test_undo_without_schedule(self, service, driver, plans, make_subscription):
        make_subscription(plans["essential"])
        with pytest.raises(ConflictError):
            service.undo_cancellation(driver.id)

    def test_schedule_without_subscription(self, service, driver):
        with pytest.raises(NotFoundError):
            service.schedule_cancellation(driver.id)


class TestSuspendAndCancel:
    def test_suspend_once(self, service, driver, plans, make_subscription):
        subscription = make_subscription(plans["essential"])
        assert service.suspend(subscription) is True
        assert service.suspend(subscription) is False

        refreshed = SubscriptionRepository(service.db).get_by_id(subscription.id)
        assert refreshed.status == SubscriptionStatus.SUSPENDED.value
        assert not refreshed.active
        assert refreshed.suspended_at is not None

        types = [n.notification_type for n in NotificationRepository(service.db).get_for_driver(driver.id)]
        assert types == [NotificationType.SUBSCRIPTION_SUSPENDED.value]

    def test_cancel(self, service, driver, plans, make_subscription):
        subscription = make_subscription(plans["essential"])
        cancelled = service.cancel(subscription)
        assert cancelled.status == SubscriptionStatus.CANCELLED.value
        assert cancelled.cancelled_at is not None
