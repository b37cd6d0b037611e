"""Passenger charge repository for data access."""

from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.models.charge import ChargeStatus
from cyclepay.models.passenger_charge import PassengerCharge, PayoutStatus
from cyclepay.models.shared import utc_now


class PassengerChargeRepository:
    """Repository for PassengerCharge model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, charge_id: UUID) -> PassengerCharge | None:
        return self.db.query(PassengerCharge).filter(PassengerCharge.id == charge_id).first()

    def get_by_external_id(self, external_id: str) -> PassengerCharge | None:
        return (
            self.db.query(PassengerCharge)
            .filter(PassengerCharge.external_id == external_id)
            .first()
        )

    def create(
        self,
        driver_id: UUID,
        passenger_id: UUID,
        amount: Decimal,
        due_date: date,
        period_month: int,
        period_year: int,
    ) -> PassengerCharge:
        charge = PassengerCharge(
            driver_id=driver_id,
            passenger_id=passenger_id,
            amount=amount,
            due_date=due_date,
            period_month=period_month,
            period_year=period_year,
            status=ChargeStatus.PENDING.value,
        )
        self.db.add(charge)
        self.db.commit()
        self.db.refresh(charge)
        return charge

    def exists_for_period(self, passenger_id: UUID, period_month: int, period_year: int) -> bool:
        """Whether a non-cancelled charge already covers this passenger's period."""
        return (
            self.db.query(PassengerCharge)
            .filter(
                PassengerCharge.passenger_id == passenger_id,
                PassengerCharge.period_month == period_month,
                PassengerCharge.period_year == period_year,
                PassengerCharge.status != ChargeStatus.CANCELLED.value,
            )
            .first()
            is not None
        )

    def mark_paid_if_pending(
        self, charge_id: UUID, paid_amount: Decimal, paid_at: datetime
    ) -> bool:
        updated = (
            self.db.query(PassengerCharge)
            .filter(
                PassengerCharge.id == charge_id,
                PassengerCharge.status == ChargeStatus.PENDING.value,
            )
            .update(
                {
                    "status": ChargeStatus.PAID.value,
                    "paid_amount": paid_amount,
                    "paid_at": paid_at,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return bool(updated)

    def cancel_if_pending(self, charge_id: UUID, purged: bool = False) -> bool:
        now = utc_now()
        values: dict[str, object] = {"status": ChargeStatus.CANCELLED.value, "cancelled_at": now}
        if purged:
            values["purged_at"] = now
        updated = (
            self.db.query(PassengerCharge)
            .filter(
                PassengerCharge.id == charge_id,
                PassengerCharge.status == ChargeStatus.PENDING.value,
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    def clear_purge_marker(self, charge_id: UUID) -> None:
        self.db.query(PassengerCharge).filter(PassengerCharge.id == charge_id).update(
            {"purged_at": None}, synchronize_session=False
        )
        self.db.commit()

    def get_pending_for_driver(
        self, driver_id: UUID, due_after: date | None = None
    ) -> list[PassengerCharge]:
        query = self.db.query(PassengerCharge).filter(
            PassengerCharge.driver_id == driver_id,
            PassengerCharge.status == ChargeStatus.PENDING.value,
        )
        if due_after is not None:
            query = query.filter(PassengerCharge.due_date > due_after)
        return query.order_by(PassengerCharge.due_date.asc()).all()

    def get_purged_for_driver(self, driver_id: UUID) -> list[PassengerCharge]:
        return (
            self.db.query(PassengerCharge)
            .filter(
                PassengerCharge.driver_id == driver_id,
                PassengerCharge.status == ChargeStatus.CANCELLED.value,
                PassengerCharge.purged_at.isnot(None),
            )
            .order_by(PassengerCharge.due_date.asc())
            .all()
        )

    def set_payout_status(self, charge_id: UUID, payout_status: PayoutStatus) -> None:
        self.db.query(PassengerCharge).filter(PassengerCharge.id == charge_id).update(
            {"payout_status": payout_status.value}, synchronize_session=False
        )
        self.db.commit()

    def get_awaiting_payout(
        self,
        driver_id: UUID | None = None,
        payout_statuses: Iterable[PayoutStatus] = (PayoutStatus.PENDING, PayoutStatus.FAILED),
    ) -> list[PassengerCharge]:
        """Paid charges whose payout has not completed or was never started."""
        query = self.db.query(PassengerCharge).filter(
            PassengerCharge.status == ChargeStatus.PAID.value,
            PassengerCharge.payout_status.in_([s.value for s in payout_statuses])
            | PassengerCharge.payout_status.is_(None),
        )
        if driver_id is not None:
            query = query.filter(PassengerCharge.driver_id == driver_id)
        return query.order_by(PassengerCharge.paid_at.asc()).all()

    def set_instruction(
        self,
        charge_id: UUID,
        external_id: str,
        payment_instruction: str,
        instruction_url: str | None,
        instruction_kind: str,
        expires_at: datetime | None,
        attempts: int,
    ) -> PassengerCharge | None:
        charge = self.get_by_id(charge_id)
        if not charge:
            return None
        charge.external_id = external_id  # type: ignore[assignment]
        charge.payment_instruction = payment_instruction  # type: ignore[assignment]
        charge.instruction_url = instruction_url  # type: ignore[assignment]
        charge.instruction_kind = instruction_kind  # type: ignore[assignment]
        charge.instruction_expires_at = expires_at  # type: ignore[assignment]
        charge.instruction_attempts = attempts  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(charge)
        return charge
