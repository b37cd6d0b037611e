"""Tests for the scheduled subscription sweeps."""

from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal

import pytest

from cyclepay.models.charge import BillingType, ChargeStatus
from cyclepay.models.passenger import PassengerDisabledReason
from cyclepay.models.subscription import SubscriptionStatus
from cyclepay.repositories.charge_repository import ChargeRepository
from cyclepay.repositories.driver_repository import DriverRepository
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.repositories.passenger_repository import PassengerRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.subscription_automation import SubscriptionAutomationService

AS_OF = date(2026, 3, 10)


def _at(d: date) -> datetime:
    return datetime.combine(d, time(9, 0), tzinfo=UTC)


@pytest.fixture
def service(db_session, gateway):
    return SubscriptionAutomationService(db_session, gateway)


class TestSubscriptionRenewals:
    def test_creates_renewal_ahead_of_cycle_end(self, service, plans, make_subscription):
        subscription = make_subscription(plans["essential"], cycle_end=AS_OF + timedelta(days=5))

        assert service.generate_subscription_renewals(AS_OF) == 1
        assert service.generate_subscription_renewals(AS_OF) == 0

        [renewal] = ChargeRepository(service.db).get_pending_for_subscription(
            subscription.id, [BillingType.RENEWAL]
        )
        assert renewal.due_date == AS_OF + timedelta(days=5)
        assert renewal.amount == Decimal("49.90")

    def test_skips_other_cycles_free_rows_and_cancellations(self, service, db_session, plans, make_subscription):
        make_subscription(plans["essential"], cycle_end=AS_OF + timedelta(days=6))
        make_subscription(plans["free"], cycle_end=AS_OF + timedelta(days=5))
        leaving = make_subscription(plans["pro_10"], cycle_end=AS_OF + timedelta(days=5))
        SubscriptionRepository(db_session).update_fields(
            leaving.id, cancellation_requested_at=_at(AS_OF)
        )

        assert service.generate_subscription_renewals(AS_OF) == 0


class TestTrialExpirations:
    def test_expired_trial_awaits_payment(self, service, driver, plans):
        trial = service.lifecycle.change_plan(driver.id, plans["essential"].id, now=_at(AS_OF))
        trial_end = trial.subscription.trial_end

        assert service.process_trial_expirations(trial_end - timedelta(days=1)) == 0
        assert service.process_trial_expirations(trial_end) == 1

        subscription = SubscriptionRepository(service.db).get_by_id(trial.subscription.id)
        assert subscription.status == SubscriptionStatus.PENDING_PAYMENT.value
        assert service.process_trial_expirations(trial_end) == 0


class TestOverdueSuspension:
    def test_overdue_renewal_suspends(self, service, plans, make_subscription):
        subscription = make_subscription(plans["essential"], cycle_end=AS_OF - timedelta(days=1))
        service.charge_service.create_subscription_charge(
            subscription, Decimal("49.90"), BillingType.RENEWAL, AS_OF - timedelta(days=1)
        )

        assert service.suspend_overdue_subscriptions(AS_OF) == 1
        assert service.suspend_overdue_subscriptions(AS_OF) == 0

        stored = SubscriptionRepository(service.db).get_by_id(subscription.id)
        assert stored.status == SubscriptionStatus.SUSPENDED.value
        assert not stored.active

    def test_charge_due_today_is_not_overdue(self, service, plans, make_subscription):
        subscription = make_subscription(plans["essential"], cycle_end=AS_OF)
        service.charge_service.create_subscription_charge(
            subscription, Decimal("49.90"), BillingType.RENEWAL, AS_OF
        )
        assert service.suspend_overdue_subscriptions(AS_OF) == 0

    def test_overdue_plan_change_does_not_suspend(self, service, plans, make_subscription):
        subscription = make_subscription(plans["essential"], cycle_end=AS_OF + timedelta(days=10))
        service.charge_service.create_subscription_charge(
            subscription, Decimal("20.00"), BillingType.UPGRADE, AS_OF - timedelta(days=3)
        )
        assert service.suspend_overdue_subscriptions(AS_OF) == 0

    def test_unpaid_downgrade_charge_suspends(self, service, driver, plans, make_subscription):
        cycle_end = AS_OF + timedelta(days=10)
        make_subscription(plans["pro_10"], cycle_end=cycle_end, anchor_date=AS_OF)
        downgrade = service.lifecycle.change_plan(driver.id, plans["essential"].id, now=_at(AS_OF))

        assert service.generate_subscription_renewals(cycle_end - timedelta(days=5)) == 0
        assert service.suspend_overdue_subscriptions(cycle_end) == 0
        assert service.suspend_overdue_subscriptions(cycle_end + timedelta(days=1)) == 1

        stored = SubscriptionRepository(service.db).get_by_id(downgrade.subscription.id)
        assert stored.status == SubscriptionStatus.SUSPENDED.value
        charge = ChargeRepository(service.db).get_by_id(downgrade.charge.id)
        assert charge.billing_type == BillingType.DOWNGRADE.value
        assert charge.status == ChargeStatus.PENDING.value


class TestAbandonment:
    def test_cancels_after_grace_and_deactivates_driver(
        self, service, driver, plans, make_subscription, make_passenger
    ):
        subscription = make_subscription(plans["essential"], cycle_end=AS_OF - timedelta(days=40))
        renewal = service.charge_service.create_subscription_charge(
            subscription, Decimal("49.90"), BillingType.RENEWAL, AS_OF - timedelta(days=40)
        )
        passenger_charge = service.charge_service.create_passenger_charge(
            make_passenger(), AS_OF + timedelta(days=5), 3, 2026
        )
        service.lifecycle.suspend(subscription, now=_at(AS_OF - timedelta(days=31)))

        assert service.cleanup_abandoned(AS_OF) == 1

        stored = SubscriptionRepository(service.db).get_by_id(subscription.id)
        assert stored.status == SubscriptionStatus.CANCELLED.value
        assert ChargeRepository(service.db).get_by_id(renewal.id).status == ChargeStatus.CANCELLED.value
        assert (
            PassengerChargeRepository(service.db).get_by_id(passenger_charge.id).status
            == ChargeStatus.CANCELLED.value
        )
        assert not DriverRepository(service.db).get_by_id(driver.id).active

    def test_recent_suspension_is_kept(self, service, plans, make_subscription):
        subscription = make_subscription(plans["essential"])
        service.lifecycle.suspend(subscription, now=_at(AS_OF - timedelta(days=10)))

        assert service.cleanup_abandoned(AS_OF) == 0
        assert service.cleanup_abandoned(AS_OF, grace_days=10) == 1


class TestScheduledCancellations:
    def test_finalizes_after_cycle_end(self, service, driver, plans, make_subscription, make_passenger):
        make_subscription(plans["pro_10"], cycle_end=AS_OF - timedelta(days=1))
        passenger = make_passenger()
        subscription = service.lifecycle.schedule_cancellation(driver.id, now=_at(AS_OF - timedelta(days=5)))

        assert service.finalize_scheduled_cancellations(AS_OF - timedelta(days=1)) == 0
        assert service.finalize_scheduled_cancellations(AS_OF) == 1

        stored = SubscriptionRepository(service.db).get_by_id(subscription.id)
        assert stored.status == SubscriptionStatus.CANCELLED.value
        assert not stored.active
        refreshed = PassengerRepository(service.db).get_by_id(passenger.id)
        assert not refreshed.auto_billing
        assert refreshed.auto_billing_disabled_reason == PassengerDisabledReason.PLAN.value


class TestDailyMonitor:
    def test_reports_every_sweep(self, service):
        assert service.run_daily_monitor(AS_OF) == {
            "trials_expired": 0,
            "suspended": 0,
            "abandoned": 0,
            "cancellations_finalized": 0,
        }
