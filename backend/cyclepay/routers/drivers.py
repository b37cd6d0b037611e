from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from cyclepay.core.database import get_db
from cyclepay.models.driver import Driver
from cyclepay.schemas.driver import DriverPayoutKeyResponse, PayoutKeyRequest
from cyclepay.services.payout_key_service import PayoutKeyService
from cyclepay.tasks import enqueue_payouts

router = APIRouter()


@router.post(
    "/{driver_id}/payout-key",
    response_model=DriverPayoutKeyResponse,
    summary="Register payout key",
    responses={
        404: {"description": "Driver not found"},
        422: {"description": "Invalid payout key"},
    },
)
async def register_payout_key(
    driver_id: UUID,
    data: PayoutKeyRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> Driver:
    """Register the Pix key that receives passenger payouts.

    The key is verified with a trace transfer before payouts are sent to it.
    """
    driver, jobs = PayoutKeyService(db).register_key(
        driver_id, data.payout_key, data.payout_key_type.value
    )
    if jobs:
        background_tasks.add_task(enqueue_payouts, jobs)
    return driver
