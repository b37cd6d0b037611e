import logging
from typing import Any
from uuid import UUID

from arq import cron, func
from arq.worker import Retry

from cyclepay.core.database import SessionLocal
from cyclepay.core.errors import GatewayTransientError
from cyclepay.models.shared import utc_now, utc_today
from cyclepay.services.config_service import ConfigKey, ConfigService
from cyclepay.services.notification_service import NotificationService
from cyclepay.services.passenger_billing import PassengerBillingService
from cyclepay.services.payout_key_service import PayoutKeyService
from cyclepay.services.payout_service import PayoutJob, PayoutService
from cyclepay.services.subscription_automation import SubscriptionAutomationService
from cyclepay.tasks import redis_settings

logger = logging.getLogger(__name__)


async def _enqueue_payout_jobs(ctx: dict[str, Any], jobs: list[PayoutJob]) -> int:
    redis = ctx.get("redis")
    if redis is None:
        return 0
    queued = 0
    for job in jobs:
        enqueued = await redis.enqueue_job(
            "process_payout_task",
            str(job.transaction_id),
            _job_id=f"payout-{job.transaction_id}",
        )
        if enqueued is not None:
            queued += 1
    return queued


async def process_payout_task(ctx: dict[str, Any], transaction_id: str) -> str:
    """Queue consumer: submit one payout transfer.

    Transient gateway failures are retried with a linear backoff until
    PAYOUT_MAX_ATTEMPTS; after that the transaction stays pending_retry for the
    hourly sweep.
    """
    db = SessionLocal()
    try:
        service = PayoutService(db)
        max_attempts = ConfigService(db).get_int(ConfigKey.PAYOUT_MAX_ATTEMPTS)
        try:
            transaction = service.process_payout(UUID(transaction_id))
        except GatewayTransientError:
            job_try = int(ctx.get("job_try", 1))
            if job_try < max_attempts:
                raise Retry(defer=job_try * 60) from None
            logger.warning(
                "Payout %s still failing after %d attempts, leaving it to the sweep",
                transaction_id,
                job_try,
            )
            return "pending_retry"
        return str(transaction.status)
    finally:
        db.close()


async def initiate_payout_task(ctx: dict[str, Any], passenger_charge_id: str) -> str:
    """Open a payout for a freshly paid passenger charge and queue its transfer."""
    db = SessionLocal()
    try:
        initiation = PayoutService(db).initiate_payout(UUID(passenger_charge_id))
        if initiation.job is not None:
            await _enqueue_payout_jobs(ctx, [initiation.job])
        return initiation.outcome.value
    finally:
        db.close()


async def reprocess_payouts_task(ctx: dict[str, Any]) -> int:
    """Background task: re-drive unfinished payouts of drivers with a verified key.

    Runs hourly.
    """
    db = SessionLocal()
    try:
        jobs = PayoutService(db).reprocess_all_pending()
        count = await _enqueue_payout_jobs(ctx, jobs)
        if count > 0:
            logger.info("Re-queued %d payouts", count)
        return count
    finally:
        db.close()


async def monitor_transfers_task(ctx: dict[str, Any]) -> int:
    """Background task: poll in-flight transfers and key validations.

    Runs every 10 minutes.
    """
    db = SessionLocal()
    try:
        settled = PayoutService(db).monitor_transfers(utc_now())
        jobs = PayoutKeyService(db).monitor_pending_validations()
        await _enqueue_payout_jobs(ctx, jobs)
        if settled > 0:
            logger.info("Settled %d transfers", settled)
        return settled
    finally:
        db.close()


async def generate_passenger_charges_task(ctx: dict[str, Any]) -> int:
    """Background task: create next month's passenger charges once the generation day arrives."""
    db = SessionLocal()
    try:
        return PassengerBillingService(db).generate_renewal_charges(utc_today())
    finally:
        db.close()


async def generate_subscription_renewals_task(ctx: dict[str, Any]) -> int:
    db = SessionLocal()
    try:
        return SubscriptionAutomationService(db).generate_subscription_renewals(utc_today())
    finally:
        db.close()


async def daily_subscription_monitor_task(ctx: dict[str, Any]) -> dict[str, int]:
    """Background task: trial expiry, overdue suspension, abandonment and cancellation.

    Runs daily.
    """
    db = SessionLocal()
    try:
        counts = SubscriptionAutomationService(db).run_daily_monitor(utc_today())
        logger.info("Daily subscription monitor: %s", counts)
        return counts
    finally:
        db.close()


async def deliver_notifications_task(ctx: dict[str, Any]) -> int:
    """Background task: deliver queued notifications, retrying failures with backoff.

    Runs every 5 minutes.
    """
    db = SessionLocal()
    try:
        count = NotificationService(db).deliver_pending()
        if count > 0:
            logger.info("Attempted delivery of %d notifications", count)
        return count
    finally:
        db.close()


class WorkerSettings:
    functions = [
        func(process_payout_task, keep_result=0),
        initiate_payout_task,
        reprocess_payouts_task,
        monitor_transfers_task,
        generate_passenger_charges_task,
        generate_subscription_renewals_task,
        daily_subscription_monitor_task,
        deliver_notifications_task,
    ]
    cron_jobs = [
        cron(generate_passenger_charges_task, hour=3, minute=0),  # daily
        cron(generate_subscription_renewals_task, hour=3, minute=10),  # daily
        cron(daily_subscription_monitor_task, hour=3, minute=20),  # daily
        cron(reprocess_payouts_task, minute={30}),  # hourly
        cron(monitor_transfers_task, minute={0, 10, 20, 30, 40, 50}),
        cron(
            deliver_notifications_task,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
        ),
    ]
    redis_settings = redis_settings
