from sqlalchemy import Column, DateTime, ForeignKey, String, func

from cyclepay.core.database import Base
from cyclepay.models.shared import UUIDType, generate_uuid


class PendingKeyValidation(Base):
    """An in-flight trace transfer proving ownership of a driver's payout key.

    Deleted once the validation resolves either way.
    """

    __tablename__ = "pending_key_validations"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    driver_id = Column(
        UUIDType,
        ForeignKey("drivers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    payout_key = Column(String(255), nullable=False)
    payout_key_type = Column(String(20), nullable=False)
    idempotency_key = Column(String(100), unique=True, nullable=False)
    transfer_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
