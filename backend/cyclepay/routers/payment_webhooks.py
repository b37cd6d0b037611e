"""Pix payment notification endpoint."""

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from cyclepay.core.database import get_db
from cyclepay.schemas.webhook import WebhookProcessingResponse
from cyclepay.services.payment_webhook_service import EventRoute, PaymentWebhookService
from cyclepay.tasks import enqueue_payout_initiation

logger = logging.getLogger(__name__)

router = APIRouter()


async def _enqueue_payout_initiations(passenger_charge_ids: list[str]) -> None:
    """Enqueue payout initiation for the given paid passenger charges."""
    for charge_id in passenger_charge_ids:
        try:
            await enqueue_payout_initiation(charge_id)
        except Exception:
            logger.exception("Failed to enqueue payout for passenger charge %s", charge_id)


@router.post(
    "/pix/{provider}",
    response_model=WebhookProcessingResponse,
    summary="Receive Pix payment notifications",
    responses={
        400: {"description": "Invalid JSON payload"},
        422: {"description": "Unsupported Pix provider"},
    },
)
async def handle_pix_webhook(
    provider: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> WebhookProcessingResponse:
    """Confirm the charges settled by a provider notification.

    Passenger payments additionally trigger a payout to the driver, queued
    after the response is sent.
    """
    try:
        payload: dict[str, Any] = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    routed = PaymentWebhookService(db).handle_notification(provider, payload)

    paid_passenger_charges = [
        str(event.charge_id)
        for event in routed
        if event.route == EventRoute.PASSENGER and event.newly_paid and event.charge_id is not None
    ]
    if paid_passenger_charges:
        background_tasks.add_task(_enqueue_payout_initiations, paid_passenger_charges)

    ignored = sum(1 for event in routed if event.route == EventRoute.UNMATCHED)
    return WebhookProcessingResponse(
        received=len(routed),
        processed=len(routed) - ignored,
        ignored=ignored,
    )
