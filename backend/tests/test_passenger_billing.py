"""Tests for monthly passenger charge generation and auto-fill."""

from datetime import date
from decimal import Decimal

import pytest

from cyclepay.models.shared import utc_now
from cyclepay.models.subscription import SubscriptionStatus
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.repositories.passenger_repository import PassengerRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.passenger_billing import PassengerBillingService


@pytest.fixture
def service(db_session, gateway):
    return PassengerBillingService(db_session, gateway)


def _charges_for(db, driver_id):
    return PassengerChargeRepository(db).get_pending_for_driver(driver_id)


class TestGenerateRenewalCharges:
    def test_skipped_before_generation_day(self, service, driver, plans, make_subscription, make_passenger):
        make_subscription(plans["essential"])
        make_passenger()
        assert service.generate_renewal_charges(today=date(2026, 3, 24)) == 0
        assert _charges_for(service.db, driver.id) == []

    def test_creates_next_month_charges(self, service, driver, plans, make_subscription, make_passenger):
        make_subscription(plans["essential"])
        billed = make_passenger("Ana", monthly_fee=Decimal("180.00"), due_day=31)
        make_passenger("Bruno", auto_billing=False)
        make_passenger("Carla", monthly_fee=Decimal("0.00"))

        assert service.generate_renewal_charges(today=date(2027, 1, 25)) == 1

        [charge] = _charges_for(service.db, driver.id)
        assert charge.passenger_id == billed.id
        assert charge.amount == Decimal("180.00")
        assert charge.period_month == 2
        assert charge.period_year == 2027
        assert charge.due_date == date(2027, 2, 28)

    def test_generation_is_idempotent(self, service, plans, make_subscription, make_passenger):
        make_subscription(plans["essential"])
        make_passenger()
        assert service.generate_renewal_charges(today=date(2026, 3, 25)) == 1
        assert service.generate_renewal_charges(today=date(2026, 3, 28)) == 0

    def test_force_ignores_generation_day(self, service, plans, make_subscription, make_passenger):
        make_subscription(plans["essential"])
        make_passenger()
        assert service.generate_renewal_charges(today=date(2026, 3, 2), force=True) == 1

    def test_custom_cutoff_day(self, service, plans, make_subscription, make_passenger):
        make_subscription(plans["essential"])
        make_passenger()
        assert service.generate_renewal_charges(today=date(2026, 3, 20), cutoff_day=20) == 1

    def test_missing_due_day_uses_default(self, service, driver, plans, make_subscription, make_passenger):
        make_subscription(plans["essential"])
        make_passenger(due_day=None)
        service.generate_renewal_charges(today=date(2026, 3, 25))
        [charge] = _charges_for(service.db, driver.id)
        assert charge.due_date == date(2026, 4, 10)

    def test_free_plan_is_not_billed(self, service, plans, make_subscription, make_passenger):
        make_subscription(plans["free"])
        make_passenger()
        assert service.generate_renewal_charges(today=date(2026, 3, 25)) == 0

    def test_scheduled_cancellation_is_not_billed(self, service, plans, make_subscription, make_passenger):
        subscription = make_subscription(plans["essential"])
        SubscriptionRepository(service.db).update_fields(
            subscription.id, cancellation_requested_at=utc_now()
        )
        make_passenger()
        assert service.generate_renewal_charges(today=date(2026, 3, 25)) == 0

    def test_suspended_subscription_is_not_billed(self, service, plans, make_subscription, make_passenger):
        make_subscription(plans["essential"], status=SubscriptionStatus.SUSPENDED, active=False)
        make_passenger()
        assert service.generate_renewal_charges(today=date(2026, 3, 25)) == 0


class TestAutoFill:
    def test_fills_free_slots(self, service, plans, make_subscription, make_passenger):
        subscription = make_subscription(plans["pro_10"], contracted_quota=3)
        make_passenger("Ana", auto_billing=True)
        bruno = make_passenger("Bruno", auto_billing=False)
        carla = make_passenger("Carla", auto_billing=False)
        diego = make_passenger("Diego", auto_billing=False)

        assert service.auto_fill(subscription) == 2

        repo = PassengerRepository(service.db)
        assert repo.get_by_id(bruno.id).auto_billing
        assert repo.get_by_id(carla.id).auto_billing
        assert not repo.get_by_id(diego.id).auto_billing

    def test_full_quota(self, service, plans, make_subscription, make_passenger):
        subscription = make_subscription(plans["pro_10"], contracted_quota=1)
        make_passenger("Ana", auto_billing=True)
        make_passenger("Bruno", auto_billing=False)
        assert service.auto_fill(subscription) == 0

    def test_only_professional_plans(self, service, plans, make_subscription, make_passenger):
        subscription = make_subscription(plans["essential"])
        make_passenger(auto_billing=False)
        assert service.auto_fill(subscription) == 0
