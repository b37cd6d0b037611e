"""Charge issuance: payment instructions, cancellation, purge and restore of future charges."""

import logging
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.core.errors import GatewayError, NotFoundError, ValidationError
from cyclepay.models.charge import BillingType, Charge, ChargeStatus
from cyclepay.models.passenger import Passenger
from cyclepay.models.passenger_charge import PassengerCharge
from cyclepay.models.shared import as_utc, to_money, utc_now, utc_today
from cyclepay.models.subscription import Subscription
from cyclepay.repositories.charge_repository import ChargeRepository
from cyclepay.repositories.driver_repository import DriverRepository
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.repositories.passenger_repository import PassengerRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.config_service import ConfigKey, ConfigService
from cyclepay.services.payment_gateway import (
    PayerInfo,
    PixGatewayBase,
    build_external_id,
    get_payment_gateway,
)

logger = logging.getLogger(__name__)

INSTRUCTION_KIND_IMMEDIATE = "cob"
INSTRUCTION_KIND_MATURITY = "cobv"

AnyCharge = Charge | PassengerCharge


class ChargeService:
    """Issues and invalidates Pix payment instructions for both charge tables."""

    def __init__(self, db: Session, gateway: PixGatewayBase | None = None):
        self.db = db
        self._gateway = gateway
        self.charge_repo = ChargeRepository(db)
        self.passenger_charge_repo = PassengerChargeRepository(db)
        self.driver_repo = DriverRepository(db)
        self.passenger_repo = PassengerRepository(db)
        self.subscription_repo = SubscriptionRepository(db)
        self.config = ConfigService(db)

    @property
    def gateway(self) -> PixGatewayBase:
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    def create_subscription_charge(
        self,
        subscription: Subscription,
        amount: Decimal,
        billing_type: BillingType,
        due_date: date,
    ) -> Charge:
        """Create a pending charge on a subscription row.

        A subscription holds at most one pending renewal, so a new renewal
        supersedes any renewal still open on the same row.
        """
        subscription_id = UUID(str(subscription.id))
        if billing_type == BillingType.RENEWAL:
            for stale in self.charge_repo.get_pending_for_subscription(
                subscription_id, [BillingType.RENEWAL]
            ):
                self.cancel_charge(stale)

        charge = self.charge_repo.create(
            subscription_id=subscription_id,
            driver_id=UUID(str(subscription.driver_id)),
            amount=to_money(amount),
            billing_type=billing_type,
            due_date=due_date,
        )
        logger.info(
            "Created %s charge %s of %s for subscription %s",
            billing_type.value,
            charge.id,
            charge.amount,
            subscription_id,
        )
        return charge

    def create_passenger_charge(
        self,
        passenger: Passenger,
        due_date: date,
        period_month: int,
        period_year: int,
    ) -> PassengerCharge:
        return self.passenger_charge_repo.create(
            driver_id=UUID(str(passenger.driver_id)),
            passenger_id=UUID(str(passenger.id)),
            amount=to_money(passenger.monthly_fee),
            due_date=due_date,
            period_month=period_month,
            period_year=period_year,
        )

    def find_charge(self, charge_id: UUID) -> AnyCharge:
        """Look a charge up in the subscription table first, then the passenger table."""
        charge: AnyCharge | None = self.charge_repo.get_by_id(charge_id)
        if charge is None:
            charge = self.passenger_charge_repo.get_by_id(charge_id)
        if charge is None:
            raise NotFoundError(f"Charge {charge_id} not found")
        return charge

    def get_payment_instruction(
        self, charge_id: UUID, now: datetime | None = None
    ) -> AnyCharge:
        """Return a charge with a payment instruction that is still redeemable.

        1. A cached instruction that has not expired is returned unchanged
        2. An expired one is cancelled at the gateway and re-issued under a
           new external id (charge id plus attempt counter)
        3. A charge without an instruction gets its first one
        """
        now = now or utc_now()
        charge = self.find_charge(charge_id)
        if charge.status != ChargeStatus.PENDING.value:
            raise ValidationError(
                f"Charge {charge_id} is {charge.status} and cannot be paid",
                details={"status": charge.status},
            )

        if charge.payment_instruction:
            expires_at = charge.instruction_expires_at
            if expires_at is None or as_utc(expires_at) > now:
                return charge
            logger.info("Payment instruction of charge %s expired, re-issuing", charge.id)
            self._cancel_at_gateway(charge)
            return self._issue(charge, attempt=int(charge.instruction_attempts or 0) + 1)

        return self._issue(charge, attempt=int(charge.instruction_attempts or 0))

    def cancel_charge(self, charge: AnyCharge, purged: bool = False) -> bool:
        """Cancel a pending charge and invalidate its instruction at the gateway.

        Returns False when the charge was no longer pending.
        """
        repo = self._repo_for(charge)
        if not repo.cancel_if_pending(UUID(str(charge.id)), purged=purged):
            return False
        self._cancel_at_gateway(charge)
        logger.info("Cancelled charge %s%s", charge.id, " (purged)" if purged else "")
        return True

    def cancel_pending_for_subscription(
        self,
        subscription_id: UUID,
        billing_types: list[BillingType] | None = None,
    ) -> int:
        cancelled = 0
        for charge in self.charge_repo.get_pending_for_subscription(subscription_id, billing_types):
            if self.cancel_charge(charge):
                cancelled += 1
        return cancelled

    def cancel_pending_for_driver(self, driver_id: UUID) -> int:
        """Cancel every open charge of a driver, on both tables."""
        cancelled = 0
        for charge in self.charge_repo.get_pending_for_driver(driver_id):
            if self.cancel_charge(charge):
                cancelled += 1
        for passenger_charge in self.passenger_charge_repo.get_pending_for_driver(driver_id):
            if self.cancel_charge(passenger_charge):
                cancelled += 1
        return cancelled

    def purge_future_charges(self, driver_id: UUID, paid_through: date | None) -> int:
        """Cancel charges due after the paid-through date, marking them for restore.

        Open renewal and downgrade charges are purged whatever their due date:
        they bill the cycle that starts at the paid-through date.
        """
        cutoff = paid_through or utc_today()
        purged = 0
        future = self.charge_repo.get_pending_for_driver(driver_id, due_after=cutoff)
        renewals = self.charge_repo.get_pending_for_driver(
            driver_id, [BillingType.RENEWAL, BillingType.DOWNGRADE]
        )
        seen: set[UUID] = set()
        for charge in [*future, *renewals]:
            charge_id = UUID(str(charge.id))
            if charge_id in seen:
                continue
            seen.add(charge_id)
            if self.cancel_charge(charge, purged=True):
                purged += 1
        for passenger_charge in self.passenger_charge_repo.get_pending_for_driver(
            driver_id, due_after=cutoff
        ):
            if self.cancel_charge(passenger_charge, purged=True):
                purged += 1
        logger.info("Purged %d future charges of driver %s after %s", purged, driver_id, cutoff)
        return purged

    def restore_purged_charges(self, driver_id: UUID) -> int:
        """Recreate charges purged by a cancellation request that was withdrawn."""
        restored = 0
        for charge in self.charge_repo.get_purged_for_driver(driver_id):
            self.charge_repo.clear_purge_marker(UUID(str(charge.id)))
            subscription = self.subscription_repo.get_by_id(UUID(str(charge.subscription_id)))
            if subscription is None:
                continue
            self.create_subscription_charge(
                subscription,
                Decimal(str(charge.amount)),
                BillingType(charge.billing_type),
                charge.due_date,  # type: ignore[arg-type]
            )
            restored += 1

        for passenger_charge in self.passenger_charge_repo.get_purged_for_driver(driver_id):
            self.passenger_charge_repo.clear_purge_marker(UUID(str(passenger_charge.id)))
            passenger = self.passenger_repo.get_by_id(UUID(str(passenger_charge.passenger_id)))
            if passenger is None or self.passenger_charge_repo.exists_for_period(
                UUID(str(passenger.id)),
                int(passenger_charge.period_month),
                int(passenger_charge.period_year),
            ):
                continue
            self.passenger_charge_repo.create(
                driver_id=driver_id,
                passenger_id=UUID(str(passenger.id)),
                amount=to_money(passenger_charge.amount),
                due_date=passenger_charge.due_date,  # type: ignore[arg-type]
                period_month=int(passenger_charge.period_month),
                period_year=int(passenger_charge.period_year),
            )
            restored += 1

        logger.info("Restored %d purged charges of driver %s", restored, driver_id)
        return restored

    def _repo_for(self, charge: AnyCharge) -> ChargeRepository | PassengerChargeRepository:
        if isinstance(charge, PassengerCharge):
            return self.passenger_charge_repo
        return self.charge_repo

    def _payer_for(self, charge: AnyCharge) -> tuple[PayerInfo | None, str]:
        driver = self.driver_repo.get_by_id(UUID(str(charge.driver_id)))
        if isinstance(charge, PassengerCharge):
            passenger = self.passenger_repo.get_by_id(UUID(str(charge.passenger_id)))
            description = f"Mensalidade {charge.period_month:02d}/{charge.period_year}"
            if passenger is None or not passenger.payer_tax_id:
                return None, description
            name = passenger.payer_name or passenger.name
            return PayerInfo(tax_id=str(passenger.payer_tax_id), name=str(name)), description

        description = f"Assinatura ({charge.billing_type})"
        if driver is None:
            return None, description
        return PayerInfo(tax_id=str(driver.tax_id), name=str(driver.name)), description

    def _issue(self, charge: AnyCharge, attempt: int) -> AnyCharge:
        payer, description = self._payer_for(charge)
        with_maturity = charge.due_date is not None and charge.due_date > utc_today()
        external_id = build_external_id(UUID(str(charge.id)), attempt)

        result = self.gateway.create_charge(
            external_id=external_id,
            amount=Decimal(str(charge.amount)),
            payer=payer,
            due_date=charge.due_date if with_maturity else None,  # type: ignore[arg-type]
            expiration_seconds=self.config.get_int(ConfigKey.PIX_EXPIRATION_SECONDS),
            grace_days=self.config.get_int(ConfigKey.PIX_GRACE_DAYS),
            description=description,
        )
        updated = self._repo_for(charge).set_instruction(
            UUID(str(charge.id)),
            external_id=result.external_id,
            payment_instruction=result.payment_instruction,
            instruction_url=result.instruction_url,
            instruction_kind=(
                INSTRUCTION_KIND_MATURITY if with_maturity else INSTRUCTION_KIND_IMMEDIATE
            ),
            expires_at=result.expires_at,
            attempts=attempt,
        )
        logger.info("Issued payment instruction %s for charge %s", result.external_id, charge.id)
        return updated or charge

    def _cancel_at_gateway(self, charge: AnyCharge) -> None:
        if not charge.external_id:
            return
        try:
            self.gateway.cancel_charge(
                str(charge.external_id),
                with_maturity=charge.instruction_kind == INSTRUCTION_KIND_MATURITY,
            )
        except GatewayError as e:
            logger.warning(
                "Could not cancel instruction %s of charge %s at the gateway: %s",
                charge.external_id,
                charge.id,
                e,
            )
