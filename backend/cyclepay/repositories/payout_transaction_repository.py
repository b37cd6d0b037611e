"""Payout transaction repository for data access."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cyclepay.models.payout_transaction import PayoutTransaction, PayoutTransactionStatus
from cyclepay.models.shared import utc_now


class PayoutTransactionRepository:
    """Repository for PayoutTransaction model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, transaction_id: UUID) -> PayoutTransaction | None:
        return (
            self.db.query(PayoutTransaction).filter(PayoutTransaction.id == transaction_id).first()
        )

    def create(
        self,
        passenger_charge_id: UUID,
        driver_id: UUID,
        gross_amount: Decimal,
        platform_fee: Decimal,
        net_amount: Decimal,
        status: PayoutTransactionStatus,
        failure_reason: str | None = None,
    ) -> PayoutTransaction:
        transaction = PayoutTransaction(
            passenger_charge_id=passenger_charge_id,
            driver_id=driver_id,
            gross_amount=gross_amount,
            platform_fee=platform_fee,
            net_amount=net_amount,
            status=status.value,
            failure_reason=failure_reason,
        )
        self.db.add(transaction)
        self.db.commit()
        self.db.refresh(transaction)
        return transaction

    def create_open(
        self,
        passenger_charge_id: UUID,
        driver_id: UUID,
        gross_amount: Decimal,
        platform_fee: Decimal,
        net_amount: Decimal,
    ) -> PayoutTransaction | None:
        """Insert a processing transaction unless the charge already has one in flight.

        Returns None when another writer opened a payout for the charge first.
        """
        try:
            return self.create(
                passenger_charge_id=passenger_charge_id,
                driver_id=driver_id,
                gross_amount=gross_amount,
                platform_fee=platform_fee,
                net_amount=net_amount,
                status=PayoutTransactionStatus.PROCESSING,
            )
        except IntegrityError:
            self.db.rollback()
            return None

    def get_succeeded_for_charge(self, passenger_charge_id: UUID) -> PayoutTransaction | None:
        return (
            self.db.query(PayoutTransaction)
            .filter(
                PayoutTransaction.passenger_charge_id == passenger_charge_id,
                PayoutTransaction.status == PayoutTransactionStatus.SUCCEEDED.value,
            )
            .first()
        )

    def get_open_for_charge(self, passenger_charge_id: UUID) -> PayoutTransaction | None:
        """The latest transaction still in flight (processing or awaiting a retry)."""
        return (
            self.db.query(PayoutTransaction)
            .filter(
                PayoutTransaction.passenger_charge_id == passenger_charge_id,
                PayoutTransaction.status.in_(
                    [
                        PayoutTransactionStatus.PROCESSING.value,
                        PayoutTransactionStatus.PENDING_RETRY.value,
                    ]
                ),
            )
            .order_by(PayoutTransaction.created_at.desc())
            .first()
        )

    def get_processing_since(self, since: datetime) -> list[PayoutTransaction]:
        """Transfers submitted to the provider and still awaiting a terminal state."""
        return (
            self.db.query(PayoutTransaction)
            .filter(
                PayoutTransaction.status == PayoutTransactionStatus.PROCESSING.value,
                PayoutTransaction.transfer_id.isnot(None),
                PayoutTransaction.created_at >= since,
            )
            .all()
        )

    def increment_attempts(self, transaction_id: UUID) -> None:
        self.db.query(PayoutTransaction).filter(PayoutTransaction.id == transaction_id).update(
            {"attempts": PayoutTransaction.attempts + 1}, synchronize_session=False
        )
        self.db.commit()

    def mark_processing(self, transaction_id: UUID, transfer_id: str | None = None) -> None:
        values: dict[str, object] = {"status": PayoutTransactionStatus.PROCESSING.value}
        if transfer_id:
            values["transfer_id"] = transfer_id
        self.db.query(PayoutTransaction).filter(PayoutTransaction.id == transaction_id).update(
            values, synchronize_session=False
        )
        self.db.commit()

    def mark_succeeded(self, transaction_id: UUID, transfer_id: str | None = None) -> bool:
        """Close a transaction as succeeded unless it already reached a terminal state."""
        values: dict[str, object] = {
            "status": PayoutTransactionStatus.SUCCEEDED.value,
            "completed_at": utc_now(),
            "failure_reason": None,
        }
        if transfer_id:
            values["transfer_id"] = transfer_id
        updated = (
            self.db.query(PayoutTransaction)
            .filter(
                PayoutTransaction.id == transaction_id,
                PayoutTransaction.status.in_(
                    [
                        PayoutTransactionStatus.PROCESSING.value,
                        PayoutTransactionStatus.PENDING_RETRY.value,
                    ]
                ),
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    def mark_pending_retry(self, transaction_id: UUID, reason: str) -> None:
        self.db.query(PayoutTransaction).filter(PayoutTransaction.id == transaction_id).update(
            {
                "status": PayoutTransactionStatus.PENDING_RETRY.value,
                "failure_reason": reason[:500],
            },
            synchronize_session=False,
        )
        self.db.commit()

    def mark_failed(self, transaction_id: UUID, reason: str) -> None:
        self.db.query(PayoutTransaction).filter(PayoutTransaction.id == transaction_id).update(
            {
                "status": PayoutTransactionStatus.FAILED.value,
                "failure_reason": reason[:500],
                "completed_at": utc_now(),
            },
            synchronize_session=False,
        )
        self.db.commit()
