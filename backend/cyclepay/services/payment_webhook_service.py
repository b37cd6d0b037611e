"""Routes inbound Pix payment notifications to the charge they settle."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.repositories.charge_repository import ChargeRepository
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.schemas.webhook import PaymentConfirmedEvent
from cyclepay.services.payment_gateway import PixGatewayBase, get_payment_gateway
from cyclepay.services.payment_reconciliation import PaymentReconciliationService

logger = logging.getLogger(__name__)


class EventRoute(str, Enum):
    SUBSCRIPTION = "subscription"
    PASSENGER = "passenger"
    UNMATCHED = "unmatched"


@dataclass
class RoutedEvent:
    external_transaction_id: str
    route: EventRoute
    charge_id: UUID | None = None
    newly_paid: bool = False


class PaymentWebhookService:
    """Matches payment events to charges: subscription charges first, then passenger charges."""

    def __init__(self, db: Session, gateway: PixGatewayBase | None = None):
        self.db = db
        self._gateway = gateway
        self.charge_repo = ChargeRepository(db)
        self.passenger_charge_repo = PassengerChargeRepository(db)
        self.reconciliation = PaymentReconciliationService(db, gateway)

    def handle_notification(self, provider: str, payload: dict[str, Any]) -> list[RoutedEvent]:
        gateway = self._gateway or get_payment_gateway(provider)
        events = gateway.parse_webhook(payload)
        return [self.route_event(event) for event in events]

    def route_event(self, event: PaymentConfirmedEvent) -> RoutedEvent:
        txid = event.external_transaction_id

        charge = self.charge_repo.get_by_external_id(txid)
        if charge is not None:
            charge_id = UUID(str(charge.id))
            self.reconciliation.confirm_payment(charge_id, event.amount, event.paid_at)
            return RoutedEvent(txid, EventRoute.SUBSCRIPTION, charge_id)

        passenger_charge = self.passenger_charge_repo.get_by_external_id(txid)
        if passenger_charge is not None:
            charge_id = UUID(str(passenger_charge.id))
            newly_paid = self.reconciliation.confirm_passenger_payment(
                charge_id, event.amount, event.paid_at
            )
            return RoutedEvent(txid, EventRoute.PASSENGER, charge_id, newly_paid)

        logger.warning("Pix payment %s matches no charge, dropping", txid)
        return RoutedEvent(txid, EventRoute.UNMATCHED)
