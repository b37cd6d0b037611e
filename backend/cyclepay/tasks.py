from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from cyclepay.core.config import settings
from cyclepay.services.payout_service import PayoutJob

# Redis connection settings
redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    """Get or create Redis pool for arq"""
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job | None:
    """
    Enqueue a task to the arq worker.

    Args:
        task_name: Name of the task function
        *args: Positional arguments for the task
        **kwargs: Keyword arguments for the task

    Returns:
        Job object from arq, or None if a job with the same id is already queued
    """
    pool = await get_redis_pool()
    try:
        return await pool.enqueue_job(task_name, *args, **kwargs)
    finally:
        await pool.close()


async def enqueue_payout(job: PayoutJob) -> Job | None:
    """Queue a payout transfer. The job id deduplicates repeated enqueues of one transaction."""
    return await enqueue_task(
        "process_payout_task",
        str(job.transaction_id),
        _job_id=f"payout-{job.transaction_id}",
    )


async def enqueue_payouts(jobs: list[PayoutJob]) -> int:
    queued = 0
    for job in jobs:
        if await enqueue_payout(job) is not None:
            queued += 1
    return queued


async def enqueue_payout_initiation(passenger_charge_id: str) -> Job | None:
    """Queue payout initiation once per charge; the job id drops repeated enqueues."""
    return await enqueue_task(
        "initiate_payout_task",
        passenger_charge_id,
        _job_id=f"payout-init-{passenger_charge_id}",
    )
