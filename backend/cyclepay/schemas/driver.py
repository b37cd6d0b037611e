from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from cyclepay.models.driver import PayoutKeyStatus, PayoutKeyType


class PayoutKeyRequest(BaseModel):
    payout_key: str = Field(..., min_length=1, max_length=255)
    payout_key_type: PayoutKeyType


class DriverPayoutKeyResponse(BaseModel):
    id: UUID
    payout_key: str | None
    payout_key_type: str | None
    payout_key_status: PayoutKeyStatus
    payout_key_holder_name: str | None
    payout_key_verified_at: datetime | None

    model_config = {"from_attributes": True}
