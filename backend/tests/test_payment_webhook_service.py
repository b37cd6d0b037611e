"""Tests for routing Pix payment notifications to charges."""

from datetime import date
from decimal import Decimal

import pytest

from cyclepay.core.errors import ValidationError
from cyclepay.models.charge import ChargeStatus
from cyclepay.models.subscription import SubscriptionStatus
from cyclepay.repositories.charge_repository import ChargeRepository
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.charge_service import ChargeService
from cyclepay.services.payment_webhook_service import EventRoute, PaymentWebhookService
from cyclepay.services.subscription_lifecycle import SubscriptionLifecycleService


@pytest.fixture
def service(db_session, gateway):
    return PaymentWebhookService(db_session, gateway)


@pytest.fixture
def charges(db_session, gateway):
    return ChargeService(db_session, gateway)


def _pix(txid: str, amount: str = "49.90", horario: str = "2026-03-10T12:00:00Z") -> dict:
    return {"txid": txid, "valor": amount, "horario": horario, "endToEndId": "E0000000020260310"}


class TestHandleNotification:
    def test_subscription_charge(self, service, db_session, gateway, charges, driver, plans):
        trial = SubscriptionLifecycleService(db_session, gateway).change_plan(
            driver.id, plans["essential"].id
        )
        issued = charges.get_payment_instruction(trial.charge.id)

        [routed] = service.handle_notification("mock", {"pix": [_pix(issued.external_id)]})

        assert routed.route == EventRoute.SUBSCRIPTION
        assert routed.charge_id == trial.charge.id
        charge = ChargeRepository(db_session).get_by_id(trial.charge.id)
        assert charge.status == ChargeStatus.PAID.value
        subscription = SubscriptionRepository(db_session).get_by_id(trial.subscription.id)
        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.cycle_end == date(2026, 4, 10)

    def test_duplicate_delivery_is_harmless(self, service, db_session, gateway, charges, driver, plans):
        trial = SubscriptionLifecycleService(db_session, gateway).change_plan(
            driver.id, plans["essential"].id
        )
        issued = charges.get_payment_instruction(trial.charge.id)
        payload = {"pix": [_pix(issued.external_id)]}

        service.handle_notification("mock", payload)
        [routed] = service.handle_notification("mock", payload)

        assert routed.route == EventRoute.SUBSCRIPTION
        subscription = SubscriptionRepository(db_session).get_by_id(trial.subscription.id)
        assert subscription.cycle_end == date(2026, 4, 10)

    def test_passenger_charge(self, service, db_session, charges, make_passenger):
        charge = charges.create_passenger_charge(make_passenger(), date(2026, 4, 10), 4, 2026)
        issued = charges.get_payment_instruction(charge.id)

        [routed] = service.handle_notification(
            "mock", {"pix": [_pix(issued.external_id, amount="150.00")]}
        )

        assert routed.route == EventRoute.PASSENGER
        assert routed.charge_id == charge.id
        stored = PassengerChargeRepository(db_session).get_by_id(charge.id)
        assert stored.status == ChargeStatus.PAID.value
        assert routed.newly_paid
        assert stored.paid_amount == Decimal("150.00")

    def test_redelivered_passenger_payment_is_not_newly_paid(self, service, charges, make_passenger):
        charge = charges.create_passenger_charge(make_passenger(), date(2026, 4, 10), 4, 2026)
        issued = charges.get_payment_instruction(charge.id)
        payload = {"pix": [_pix(issued.external_id, amount="150.00")]}

        [first] = service.handle_notification("mock", payload)
        [again] = service.handle_notification("mock", payload)

        assert first.newly_paid
        assert again.route == EventRoute.PASSENGER
        assert not again.newly_paid

    def test_unmatched_payment(self, service):
        [routed] = service.handle_notification("mock", {"pix": [_pix("UNKNOWNTXID0000000000000000")]})
        assert routed.route == EventRoute.UNMATCHED
        assert routed.charge_id is None

    def test_malformed_items_are_dropped(self, service):
        payload = {"pix": [{"txid": "", "valor": "10.00"}, _pix("UNKNOWNTXID0000000000000000")]}
        routed = service.handle_notification("mock", payload)
        assert [r.route for r in routed] == [EventRoute.UNMATCHED]

    def test_empty_notification(self, service):
        assert service.handle_notification("mock", {}) == []

    def test_unknown_provider(self, db_session):
        with pytest.raises(ValidationError):
            PaymentWebhookService(db_session).handle_notification("paypal", {"pix": []})
