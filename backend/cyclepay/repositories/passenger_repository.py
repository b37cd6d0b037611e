"""Passenger repository for data access."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from cyclepay.models.passenger import Passenger, PassengerDisabledReason


class PassengerRepository:
    """Repository for Passenger model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, passenger_id: UUID) -> Passenger | None:
        return self.db.query(Passenger).filter(Passenger.id == passenger_id).first()

    def create(
        self,
        driver_id: UUID,
        name: str,
        monthly_fee: Decimal,
        due_day: int | None = None,
        auto_billing: bool = False,
        payer_name: str | None = None,
        payer_tax_id: str | None = None,
        auto_billing_disabled_reason: PassengerDisabledReason | None = None,
    ) -> Passenger:
        passenger = Passenger(
            driver_id=driver_id,
            name=name,
            monthly_fee=monthly_fee,
            due_day=due_day,
            auto_billing=auto_billing,
            payer_name=payer_name,
            payer_tax_id=payer_tax_id,
            auto_billing_disabled_reason=(
                auto_billing_disabled_reason.value if auto_billing_disabled_reason else None
            ),
        )
        self.db.add(passenger)
        self.db.commit()
        self.db.refresh(passenger)
        return passenger

    def get_billable(self, driver_id: UUID) -> list[Passenger]:
        """Active passengers with automatic billing on."""
        return (
            self.db.query(Passenger)
            .filter(
                Passenger.driver_id == driver_id,
                Passenger.active.is_(True),
                Passenger.auto_billing.is_(True),
            )
            .order_by(Passenger.created_at.asc())
            .all()
        )

    def count_billable(self, driver_id: UUID) -> int:
        return int(
            self.db.query(func.count(Passenger.id))
            .filter(
                Passenger.driver_id == driver_id,
                Passenger.active.is_(True),
                Passenger.auto_billing.is_(True),
            )
            .scalar()
            or 0
        )

    def get_auto_fill_candidates(self, driver_id: UUID, limit: int) -> list[Passenger]:
        """Active passengers without automatic billing that were not switched off by hand."""
        return (
            self.db.query(Passenger)
            .filter(
                Passenger.driver_id == driver_id,
                Passenger.active.is_(True),
                Passenger.auto_billing.is_(False),
                (Passenger.auto_billing_disabled_reason.is_(None))
                | (
                    Passenger.auto_billing_disabled_reason
                    != PassengerDisabledReason.MANUAL.value
                ),
            )
            .order_by(Passenger.created_at.asc(), Passenger.name.asc())
            .limit(limit)
            .all()
        )

    def enable_auto_billing(self, passenger_ids: list[UUID]) -> int:
        if not passenger_ids:
            return 0
        updated = (
            self.db.query(Passenger)
            .filter(Passenger.id.in_(passenger_ids))
            .update(
                {"auto_billing": True, "auto_billing_disabled_reason": None},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return int(updated)

    def disable_auto_billing(self, driver_id: UUID, reason: PassengerDisabledReason) -> int:
        updated = (
            self.db.query(Passenger)
            .filter(Passenger.driver_id == driver_id, Passenger.auto_billing.is_(True))
            .update(
                {"auto_billing": False, "auto_billing_disabled_reason": reason.value},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return int(updated)
