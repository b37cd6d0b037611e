from enum import Enum

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import relationship

from cyclepay.core.database import Base
from cyclepay.models.shared import UUIDType, generate_uuid


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PENDING_PAYMENT = "pending_payment"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class PriceOrigin(str, Enum):
    NORMAL = "normal"
    PROMOTIONAL = "promotional"
    CUSTOM = "custom"


class Subscription(Base):
    """One driver-plan enrollment.

    Rows are never deleted: a plan change deactivates the current row and
    inserts a new one, so the table doubles as the plan change history.
    """

    __tablename__ = "subscriptions"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    driver_id = Column(
        UUIDType,
        ForeignKey("drivers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    plan_id = Column(
        UUIDType,
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status = Column(
        String(20), nullable=False, default=SubscriptionStatus.PENDING_PAYMENT.value, index=True
    )
    active = Column(Boolean, nullable=False, default=False, index=True)
    contracted_quota = Column(Integer, nullable=True)
    applied_price = Column(Numeric(12, 2), nullable=False, default=0)
    price_origin = Column(String(20), nullable=False, default=PriceOrigin.NORMAL.value)
    anchor_date = Column(Date, nullable=True)
    cycle_end = Column(Date, nullable=True)
    trial_end = Column(Date, nullable=True)
    cancellation_requested_at = Column(DateTime(timezone=True), nullable=True)
    previous_status = Column(String(20), nullable=True)
    suspended_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    plan = relationship("Plan")
