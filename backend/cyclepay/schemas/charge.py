from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel

from cyclepay.models.charge import ChargeStatus


class ChargeResponse(BaseModel):
    id: UUID
    amount: Decimal
    status: ChargeStatus
    due_date: date
    billing_type: str | None = None
    paid_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class PaymentInstructionResponse(BaseModel):
    charge_id: UUID
    amount: Decimal
    due_date: date
    external_id: str | None
    payment_instruction: str | None
    instruction_url: str | None
    instruction_kind: str | None
    expires_at: datetime | None
