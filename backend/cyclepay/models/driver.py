from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, String, func

from cyclepay.core.database import Base
from cyclepay.models.shared import UUIDType, generate_uuid


class PayoutKeyStatus(str, Enum):
    NOT_REGISTERED = "not_registered"
    PENDING_VALIDATION = "pending_validation"
    VERIFIED = "verified"
    INVALIDATED_AFTER_FAILURE = "invalidated_after_failure"


class PayoutKeyType(str, Enum):
    CPF = "cpf"
    CNPJ = "cnpj"
    EMAIL = "email"
    PHONE = "phone"
    RANDOM = "random"


class Driver(Base):
    """A subscriber: pays for the platform and receives passenger payouts."""

    __tablename__ = "drivers"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    tax_id = Column(String(20), nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    payout_key = Column(String(255), nullable=True)
    payout_key_type = Column(String(20), nullable=True)
    payout_key_status = Column(
        String(30), nullable=False, default=PayoutKeyStatus.NOT_REGISTERED.value
    )
    payout_key_holder_name = Column(String(255), nullable=True)
    payout_key_verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def has_verified_payout_key(self) -> bool:
        return bool(self.payout_key) and self.payout_key_status == PayoutKeyStatus.VERIFIED.value
