from enum import Enum

from sqlalchemy import Column, ForeignKey, Index, Integer, String

from cyclepay.core.database import Base
from cyclepay.models.charge import PaymentInstructionMixin
from cyclepay.models.shared import UUIDType, generate_uuid


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID_OUT = "paid_out"
    FAILED = "failed"


class PassengerCharge(PaymentInstructionMixin, Base):
    """A monthly passenger fee collected on the driver's behalf and paid out to them."""

    __tablename__ = "passenger_charges"
    __table_args__ = (
        Index("ix_passenger_charges_period", "passenger_id", "period_year", "period_month"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    driver_id = Column(
        UUIDType,
        ForeignKey("drivers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    passenger_id = Column(
        UUIDType,
        ForeignKey("passengers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    period_month = Column(Integer, nullable=False)
    period_year = Column(Integer, nullable=False)
    payout_status = Column(String(20), nullable=True, index=True)
