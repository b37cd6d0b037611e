from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from cyclepay.models.subscription import PriceOrigin, SubscriptionStatus
from cyclepay.schemas.charge import ChargeResponse


class SubscriptionResponse(BaseModel):
    id: UUID
    driver_id: UUID
    plan_id: UUID
    status: SubscriptionStatus
    active: bool
    contracted_quota: int | None
    applied_price: Decimal
    price_origin: PriceOrigin
    anchor_date: date | None
    cycle_end: date | None
    trial_end: date | None
    cancellation_requested_at: datetime | None
    suspended_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PlanChangeRequest(BaseModel):
    plan_id: UUID


class QuotaChangeRequest(BaseModel):
    quota: int = Field(..., gt=0, description="New contracted passenger quota.")


class PlanChangeResponse(BaseModel):
    """Outcome of a plan or quota change.

    When ``requires_payment`` is set the change takes effect once ``charge`` is paid.
    """

    kind: str
    requires_payment: bool
    subscription: SubscriptionResponse
    charge: ChargeResponse | None = None
