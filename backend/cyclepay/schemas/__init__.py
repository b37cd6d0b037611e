from cyclepay.schemas.charge import ChargeResponse, PaymentInstructionResponse
from cyclepay.schemas.driver import DriverPayoutKeyResponse, PayoutKeyRequest
from cyclepay.schemas.subscription import (
    PlanChangeRequest,
    PlanChangeResponse,
    QuotaChangeRequest,
    SubscriptionResponse,
)
from cyclepay.schemas.webhook import PaymentConfirmedEvent, WebhookProcessingResponse

__all__ = [
    "ChargeResponse",
    "DriverPayoutKeyResponse",
    "PaymentConfirmedEvent",
    "PaymentInstructionResponse",
    "PayoutKeyRequest",
    "PlanChangeRequest",
    "PlanChangeResponse",
    "QuotaChangeRequest",
    "SubscriptionResponse",
    "WebhookProcessingResponse",
]
