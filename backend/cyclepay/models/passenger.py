from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, func

from cyclepay.core.database import Base
from cyclepay.models.shared import UUIDType, generate_uuid


class PassengerDisabledReason(str, Enum):
    MANUAL = "manual"
    PLAN = "plan"


class Passenger(Base):
    """A driver's sub-entity billed monthly on the driver's behalf."""

    __tablename__ = "passengers"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    driver_id = Column(
        UUIDType,
        ForeignKey("drivers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    payer_name = Column(String(255), nullable=True)
    payer_tax_id = Column(String(20), nullable=True)
    monthly_fee = Column(Numeric(12, 2), nullable=False, default=0)
    due_day = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    auto_billing = Column(Boolean, nullable=False, default=False)
    auto_billing_disabled_reason = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
