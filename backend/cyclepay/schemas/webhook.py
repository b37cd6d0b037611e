"""Inbound payment notification schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class PaymentConfirmedEvent(BaseModel):
    """A provider payment notification normalized to the provider-independent shape."""

    external_transaction_id: str = Field(min_length=1, max_length=35)
    amount: Decimal = Field(ge=0)
    paid_at: datetime
    end_to_end_id: str | None = None
    payer_info: dict[str, Any] | None = None


class WebhookProcessingResponse(BaseModel):
    received: int
    processed: int
    ignored: int
