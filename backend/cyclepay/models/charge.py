from enum import Enum

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)

from cyclepay.core.database import Base
from cyclepay.models.shared import UUIDType, generate_uuid


class ChargeStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class BillingType(str, Enum):
    ACTIVATION = "activation"
    RENEWAL = "renewal"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    EXPANSION = "expansion"


# Paying any of these starts or changes a cycle and supersedes a pending renewal.
PLAN_CHANGE_BILLING_TYPES = (
    BillingType.ACTIVATION,
    BillingType.UPGRADE,
    BillingType.EXPANSION,
)


class PaymentInstructionMixin:
    """Columns for a charge that can be paid through a Pix payment instruction."""

    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=ChargeStatus.PENDING.value, index=True)
    due_date = Column(Date, nullable=False, index=True)
    external_id = Column(String(35), unique=True, index=True, nullable=True)
    payment_instruction = Column(Text, nullable=True)
    instruction_url = Column(String(500), nullable=True)
    instruction_kind = Column(String(10), nullable=True)
    instruction_expires_at = Column(DateTime(timezone=True), nullable=True)
    instruction_attempts = Column(Integer, nullable=False, default=0)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    paid_amount = Column(Numeric(12, 2), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    purged_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Charge(PaymentInstructionMixin, Base):
    """A subscription charge billed to the driver."""

    __tablename__ = "charges"
    __table_args__ = (Index("ix_charges_subscription_status", "subscription_id", "status"),)

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    subscription_id = Column(
        UUIDType,
        ForeignKey("subscriptions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    driver_id = Column(
        UUIDType,
        ForeignKey("drivers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    billing_type = Column(String(20), nullable=False)
    # Cycle the payment applies to, fixed when the charge flips to paid
    applied_cycle_end = Column(Date, nullable=True)
    applied_anchor_date = Column(Date, nullable=True)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)
