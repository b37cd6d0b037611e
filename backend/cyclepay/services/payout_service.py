"""Payout of collected passenger charges to drivers, net of the platform fee."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.core.errors import (
    GatewayError,
    GatewayRejectedError,
    NotFoundError,
    ValidationError,
)
from cyclepay.models.charge import ChargeStatus
from cyclepay.models.driver import Driver, PayoutKeyStatus
from cyclepay.models.notification import NotificationType
from cyclepay.models.passenger_charge import PassengerCharge, PayoutStatus
from cyclepay.models.payout_transaction import PayoutTransaction, PayoutTransactionStatus
from cyclepay.models.shared import utc_now
from cyclepay.repositories.driver_repository import DriverRepository
from cyclepay.repositories.passenger_charge_repository import PassengerChargeRepository
from cyclepay.repositories.payout_transaction_repository import PayoutTransactionRepository
from cyclepay.services.config_service import ConfigKey, ConfigService
from cyclepay.services.notification_service import NotificationService
from cyclepay.services.payment_gateway import (
    PixGatewayBase,
    TransferDestination,
    TransferResult,
    TransferState,
    get_payment_gateway,
)
from cyclepay.services.pricing import compute_payout_amounts

logger = logging.getLogger(__name__)

MISSING_DESTINATION_REASON = "missing/unverified destination"
TRANSFER_MONITOR_WINDOW = timedelta(hours=48)


class PayoutOutcome(str, Enum):
    ENQUEUED = "enqueued"
    ALREADY_DONE = "already_done"
    IN_PROGRESS = "in_progress"
    BELOW_MINIMUM = "below_minimum"
    MISSING_DESTINATION = "missing_destination"


@dataclass(frozen=True)
class PayoutJob:
    """Work item for the payout queue consumer."""

    charge_id: UUID
    recipient_id: UUID
    net_amount: Decimal
    transaction_id: UUID


@dataclass
class PayoutInitiation:
    outcome: PayoutOutcome
    transaction_id: UUID | None = None
    net_amount: Decimal | None = None
    job: PayoutJob | None = None


class PayoutService:
    """Creates payout transactions and drives them through the gateway."""

    def __init__(self, db: Session, gateway: PixGatewayBase | None = None):
        self.db = db
        self._gateway = gateway
        self.transaction_repo = PayoutTransactionRepository(db)
        self.passenger_charge_repo = PassengerChargeRepository(db)
        self.driver_repo = DriverRepository(db)
        self.notification_service = NotificationService(db)
        self.config = ConfigService(db)

    @property
    def gateway(self) -> PixGatewayBase:
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    def initiate_payout(self, passenger_charge_id: UUID) -> PayoutInitiation:
        """Open a payout for a paid passenger charge.

        1. A charge already paid out, or with a transfer in flight, is left alone
        2. net = gross - platform fee; a non-positive net pays nothing
        3. Without a verified destination a failed transaction is recorded
        4. Otherwise a processing transaction is created and a job returned for the queue
        """
        charge = self.passenger_charge_repo.get_by_id(passenger_charge_id)
        if not charge:
            raise NotFoundError(f"Passenger charge {passenger_charge_id} not found")
        if charge.status != ChargeStatus.PAID.value:
            raise ValidationError(f"Passenger charge {passenger_charge_id} is not paid")

        if self.transaction_repo.get_succeeded_for_charge(passenger_charge_id):
            return PayoutInitiation(PayoutOutcome.ALREADY_DONE)

        open_transaction = self.transaction_repo.get_open_for_charge(passenger_charge_id)
        if open_transaction is not None:
            return PayoutInitiation(
                PayoutOutcome.IN_PROGRESS,
                transaction_id=UUID(str(open_transaction.id)),
                net_amount=Decimal(str(open_transaction.net_amount)),
            )

        gross = self._collected_amount(charge)
        amounts = compute_payout_amounts(
            gross, self.config.get_decimal(ConfigKey.PLATFORM_FEE_PER_TRANSFER)
        )
        if amounts.net <= 0:
            logger.info(
                "Payout of charge %s below minimum (gross %s, fee %s)",
                passenger_charge_id,
                amounts.gross,
                amounts.fee,
            )
            return PayoutInitiation(PayoutOutcome.BELOW_MINIMUM, net_amount=amounts.net)

        driver_id = UUID(str(charge.driver_id))
        driver = self.driver_repo.get_by_id(driver_id)
        if driver is None or not driver.has_verified_payout_key:
            transaction = self.transaction_repo.create(
                passenger_charge_id=passenger_charge_id,
                driver_id=driver_id,
                gross_amount=amounts.gross,
                platform_fee=amounts.fee,
                net_amount=amounts.net,
                status=PayoutTransactionStatus.FAILED,
                failure_reason=MISSING_DESTINATION_REASON,
            )
            self.passenger_charge_repo.set_payout_status(passenger_charge_id, PayoutStatus.FAILED)
            logger.warning(
                "Payout of charge %s held: driver %s has no verified payout key",
                passenger_charge_id,
                driver_id,
            )
            return PayoutInitiation(
                PayoutOutcome.MISSING_DESTINATION,
                transaction_id=UUID(str(transaction.id)),
                net_amount=amounts.net,
            )

        transaction = self.transaction_repo.create_open(
            passenger_charge_id=passenger_charge_id,
            driver_id=driver_id,
            gross_amount=amounts.gross,
            platform_fee=amounts.fee,
            net_amount=amounts.net,
        )
        if transaction is None:
            open_transaction = self.transaction_repo.get_open_for_charge(passenger_charge_id)
            logger.info("Payout of charge %s already opened concurrently", passenger_charge_id)
            return PayoutInitiation(
                PayoutOutcome.IN_PROGRESS,
                transaction_id=UUID(str(open_transaction.id)) if open_transaction else None,
                net_amount=amounts.net,
            )
        self.passenger_charge_repo.set_payout_status(passenger_charge_id, PayoutStatus.PENDING)
        transaction_id = UUID(str(transaction.id))
        logger.info("Payout %s of %s opened for charge %s", transaction_id, amounts.net, charge.id)
        return PayoutInitiation(
            PayoutOutcome.ENQUEUED,
            transaction_id=transaction_id,
            net_amount=amounts.net,
            job=self._job_for(transaction),
        )

    def process_payout(self, transaction_id: UUID) -> PayoutTransaction:
        """Submit a payout transfer, keyed ``payout-{transaction_id}``.

        Raises:
            GatewayTransientError: After moving the transaction to pending_retry,
                so the queue can resubmit with the same key.
        """
        transaction = self.transaction_repo.get_by_id(transaction_id)
        if not transaction:
            raise NotFoundError(f"Payout transaction {transaction_id} not found")
        if transaction.status in (
            PayoutTransactionStatus.SUCCEEDED.value,
            PayoutTransactionStatus.FAILED.value,
        ):
            return transaction

        charge_id = UUID(str(transaction.passenger_charge_id))
        driver = self.driver_repo.get_by_id(UUID(str(transaction.driver_id)))
        if driver is None or not driver.has_verified_payout_key:
            self._fail(transaction, MISSING_DESTINATION_REASON)
            return self._reload(transaction_id)

        self.transaction_repo.increment_attempts(transaction_id)
        try:
            result = self.gateway.send_transfer(
                amount=Decimal(str(transaction.net_amount)),
                destination=self._destination(driver),
                idempotency_key=transaction.idempotency_key,
                description=f"Repasse {charge_id}",
            )
        except GatewayRejectedError as e:
            self._fail(transaction, e.message)
            return self._reload(transaction_id)
        except GatewayError as e:
            self.transaction_repo.mark_pending_retry(transaction_id, e.message)
            logger.warning("Payout %s will be retried: %s", transaction_id, e.message)
            raise

        self._apply_transfer_result(transaction, result)
        return self._reload(transaction_id)

    def reprocess_pending_payouts(self, driver_id: UUID) -> list[PayoutJob]:
        """Re-drive a driver's unfinished payouts once the destination is verified.

        A transaction awaiting retry is resubmitted under its own key; charges
        whose last attempt failed get a fresh transaction.
        """
        driver = self.driver_repo.get_by_id(driver_id)
        if driver is None or not driver.has_verified_payout_key:
            return []

        jobs: list[PayoutJob] = []
        for charge in self.passenger_charge_repo.get_awaiting_payout(driver_id):
            charge_id = UUID(str(charge.id))
            if self.transaction_repo.get_succeeded_for_charge(charge_id):
                self.passenger_charge_repo.set_payout_status(charge_id, PayoutStatus.PAID_OUT)
                continue

            open_transaction = self.transaction_repo.get_open_for_charge(charge_id)
            if open_transaction is not None:
                if open_transaction.status == PayoutTransactionStatus.PENDING_RETRY.value:
                    jobs.append(self._job_for(open_transaction))
                continue

            initiation = self.initiate_payout(charge_id)
            if initiation.job is not None:
                jobs.append(initiation.job)

        if jobs:
            logger.info("Re-driving %d payouts for driver %s", len(jobs), driver_id)
        return jobs

    def reprocess_all_pending(self) -> list[PayoutJob]:
        jobs: list[PayoutJob] = []
        for driver in self.driver_repo.get_with_verified_key():
            jobs.extend(self.reprocess_pending_payouts(UUID(str(driver.id))))
        return jobs

    def monitor_transfers(self, now: datetime | None = None) -> int:
        """Poll transfers submitted in the last 48 hours that are still processing.

        A failed transfer fails the payout and invalidates the driver's key.

        Returns:
            Number of transactions that reached a terminal state.
        """
        now = now or utc_now()
        settled = 0
        for transaction in self.transaction_repo.get_processing_since(now - TRANSFER_MONITOR_WINDOW):
            try:
                result = self.gateway.query_transfer(str(transaction.transfer_id))
            except GatewayError as e:
                logger.warning("Could not poll transfer %s: %s", transaction.transfer_id, e.message)
                continue
            if result.state == TransferState.WAITING_APPROVAL:
                continue
            self._apply_transfer_result(transaction, result, invalidate_key_on_failure=True)
            settled += 1
        return settled

    def _apply_transfer_result(
        self,
        transaction: PayoutTransaction,
        result: TransferResult,
        invalidate_key_on_failure: bool = False,
    ) -> None:
        transaction_id = UUID(str(transaction.id))
        charge_id = UUID(str(transaction.passenger_charge_id))

        if result.state == TransferState.PAID:
            if self.transaction_repo.mark_succeeded(transaction_id, result.transfer_id or None):
                self.passenger_charge_repo.set_payout_status(charge_id, PayoutStatus.PAID_OUT)
                self.notification_service.enqueue(
                    UUID(str(transaction.driver_id)),
                    NotificationType.PAYOUT_SUCCEEDED,
                    {
                        "transaction_id": str(transaction_id),
                        "net_amount": str(transaction.net_amount),
                    },
                )
                logger.info("Payout %s succeeded", transaction_id)
            return

        if result.state == TransferState.WAITING_APPROVAL:
            self.transaction_repo.mark_processing(transaction_id, result.transfer_id or None)
            self.passenger_charge_repo.set_payout_status(charge_id, PayoutStatus.PROCESSING)
            logger.info("Payout %s awaiting approval (%s)", transaction_id, result.transfer_id)
            return

        self._fail(transaction, result.detail or "transfer failed")
        if invalidate_key_on_failure:
            driver_id = UUID(str(transaction.driver_id))
            self.driver_repo.set_payout_key_status(
                driver_id, PayoutKeyStatus.INVALIDATED_AFTER_FAILURE
            )
            self.notification_service.enqueue(
                driver_id,
                NotificationType.PAYOUT_KEY_INVALIDATED,
                {"transaction_id": str(transaction_id)},
            )

    def _fail(self, transaction: PayoutTransaction, reason: str) -> None:
        transaction_id = UUID(str(transaction.id))
        self.transaction_repo.mark_failed(transaction_id, reason)
        self.passenger_charge_repo.set_payout_status(
            UUID(str(transaction.passenger_charge_id)), PayoutStatus.FAILED
        )
        self.notification_service.enqueue(
            UUID(str(transaction.driver_id)),
            NotificationType.PAYOUT_FAILED,
            {"transaction_id": str(transaction_id), "reason": reason},
        )
        logger.error("Payout %s failed: %s", transaction_id, reason)

    def _reload(self, transaction_id: UUID) -> PayoutTransaction:
        transaction = self.transaction_repo.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Payout transaction {transaction_id} not found")
        return transaction

    @staticmethod
    def _collected_amount(charge: PassengerCharge) -> Decimal:
        paid = charge.paid_amount if charge.paid_amount is not None else charge.amount
        return Decimal(str(paid))

    @staticmethod
    def _destination(driver: Driver) -> TransferDestination:
        return TransferDestination(
            key=str(driver.payout_key),
            key_type=driver.payout_key_type,  # type: ignore[arg-type]
            holder_name=driver.payout_key_holder_name,  # type: ignore[arg-type]
        )

    @staticmethod
    def _job_for(transaction: PayoutTransaction) -> PayoutJob:
        return PayoutJob(
            charge_id=UUID(str(transaction.passenger_charge_id)),
            recipient_id=UUID(str(transaction.driver_id)),
            net_amount=Decimal(str(transaction.net_amount)),
            transaction_id=UUID(str(transaction.id)),
        )
