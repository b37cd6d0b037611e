from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, func, text

from cyclepay.core.database import Base
from cyclepay.models.shared import UUIDType, generate_uuid


class PayoutTransactionStatus(str, Enum):
    PROCESSING = "processing"
    PENDING_RETRY = "pending_retry"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PayoutTransaction(Base):
    """One attempted payout of a paid passenger charge to its driver."""

    __tablename__ = "payout_transactions"
    __table_args__ = (
        Index(
            "uq_payout_transactions_succeeded_charge",
            "passenger_charge_id",
            unique=True,
            sqlite_where=text("status = 'succeeded'"),
            postgresql_where=text("status = 'succeeded'"),
        ),
        Index(
            "uq_payout_transactions_open_charge",
            "passenger_charge_id",
            unique=True,
            sqlite_where=text("status IN ('processing', 'pending_retry')"),
            postgresql_where=text("status IN ('processing', 'pending_retry')"),
        ),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    passenger_charge_id = Column(
        UUIDType,
        ForeignKey("passenger_charges.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    driver_id = Column(
        UUIDType,
        ForeignKey("drivers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    gross_amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    net_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(
        String(20), nullable=False, default=PayoutTransactionStatus.PROCESSING.value, index=True
    )
    failure_reason = Column(String(500), nullable=True)
    transfer_id = Column(String(100), nullable=True, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def idempotency_key(self) -> str:
        return f"payout-{self.id}"
