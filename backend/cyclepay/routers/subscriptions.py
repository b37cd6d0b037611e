from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from cyclepay.core.database import get_db
from cyclepay.models.subscription import Subscription
from cyclepay.schemas.charge import ChargeResponse, PaymentInstructionResponse
from cyclepay.schemas.subscription import (
    PlanChangeRequest,
    PlanChangeResponse,
    QuotaChangeRequest,
    SubscriptionResponse,
)
from cyclepay.services.charge_service import ChargeService
from cyclepay.services.subscription_lifecycle import (
    PlanChangeResult,
    SubscriptionLifecycleService,
)

router = APIRouter()


def _plan_change_response(result: PlanChangeResult) -> PlanChangeResponse:
    return PlanChangeResponse(
        kind=result.kind.value,
        requires_payment=result.requires_payment,
        subscription=SubscriptionResponse.model_validate(result.subscription),
        charge=ChargeResponse.model_validate(result.charge) if result.charge else None,
    )


@router.get(
    "/{driver_id}/subscription",
    response_model=SubscriptionResponse,
    summary="Get current subscription",
    responses={404: {"description": "Driver has no active subscription"}},
)
async def get_subscription(
    driver_id: UUID,
    db: Session = Depends(get_db),
) -> Subscription:
    subscription = SubscriptionLifecycleService(db).get_active_subscription(driver_id)
    if not subscription:
        raise HTTPException(status_code=404, detail="No active subscription")
    return subscription


@router.post(
    "/{driver_id}/subscription/plan",
    response_model=PlanChangeResponse,
    summary="Change plan",
    responses={
        404: {"description": "Driver or plan not found"},
        409: {"description": "Driver is already on the plan or the change would shrink the quota"},
    },
)
async def change_plan(
    driver_id: UUID,
    data: PlanChangeRequest,
    db: Session = Depends(get_db),
) -> PlanChangeResponse:
    """Enroll the driver in a plan or switch plans.

    Upgrades and paid enrollments return the charge that activates the change.
    """
    result = SubscriptionLifecycleService(db).change_plan(driver_id, data.plan_id)
    return _plan_change_response(result)


@router.post(
    "/{driver_id}/subscription/quota",
    response_model=PlanChangeResponse,
    summary="Expand passenger quota",
    responses={
        404: {"description": "Driver has no active subscription"},
        409: {"description": "Quota is lower than the contracted one"},
        422: {"description": "Plan does not allow a custom quota"},
    },
)
async def change_quota(
    driver_id: UUID,
    data: QuotaChangeRequest,
    db: Session = Depends(get_db),
) -> PlanChangeResponse:
    result = SubscriptionLifecycleService(db).change_quota(driver_id, data.quota)
    return _plan_change_response(result)


@router.post(
    "/{driver_id}/subscription/cancellation",
    response_model=SubscriptionResponse,
    summary="Schedule cancellation",
    responses={
        404: {"description": "Driver has no active subscription"},
        409: {"description": "Cancellation already scheduled"},
    },
)
async def schedule_cancellation(
    driver_id: UUID,
    db: Session = Depends(get_db),
) -> Subscription:
    """Cancel at the end of the paid cycle. Future charges are withdrawn right away."""
    return SubscriptionLifecycleService(db).schedule_cancellation(driver_id)


@router.delete(
    "/{driver_id}/subscription/cancellation",
    response_model=SubscriptionResponse,
    summary="Undo scheduled cancellation",
    responses={
        404: {"description": "Driver has no active subscription"},
        409: {"description": "No cancellation scheduled"},
    },
)
async def undo_cancellation(
    driver_id: UUID,
    db: Session = Depends(get_db),
) -> Subscription:
    return SubscriptionLifecycleService(db).undo_cancellation(driver_id)


@router.get(
    "/{driver_id}/charges/{charge_id}/instruction",
    response_model=PaymentInstructionResponse,
    summary="Get Pix payment instruction",
    responses={
        404: {"description": "Charge not found"},
        422: {"description": "Charge is not pending"},
        502: {"description": "Pix provider error"},
    },
)
async def get_payment_instruction(
    driver_id: UUID,
    charge_id: UUID,
    db: Session = Depends(get_db),
) -> PaymentInstructionResponse:
    """Return the Pix copy-and-paste code for a charge, issuing a fresh one when expired."""
    service = ChargeService(db)
    if service.find_charge(charge_id).driver_id != driver_id:
        raise HTTPException(status_code=404, detail="Charge not found")
    charge = service.get_payment_instruction(charge_id)
    return PaymentInstructionResponse(
        charge_id=charge.id,
        amount=charge.amount,
        due_date=charge.due_date,
        external_id=charge.external_id,
        payment_instruction=charge.payment_instruction,
        instruction_url=charge.instruction_url,
        instruction_kind=charge.instruction_kind,
        expires_at=charge.instruction_expires_at,
    )
