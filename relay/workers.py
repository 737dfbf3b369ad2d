"""Background workers draining the job queues, plus the periodic scheduler.

Each queue gets its own asyncio loop with a bounded semaphore, so a slow
provider on one queue never starves another. Blocking work runs in threads.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from relay.context import AppContext
from relay.logging_config import get_logger
from relay.models import Job
from relay.services.alert_service import alert_critical, alert_error
from relay.services.analytics_service import run_daily_rollup
from relay.services.job_queue import (
    ANALYTICS_ROLLUP_QUEUE,
    BILLING_QUEUE,
    DAILY_ROLLUP_JOB,
    MONTHLY_GRANT_JOB,
    SEND_MESSAGE_RETRY_JOB,
    WEBHOOK_RETRY_QUEUE,
    claim_jobs,
    enqueue_job,
    mark_job_done,
    mark_job_failed,
)

logger = get_logger("workers")

QUEUE_CONCURRENCY = {
    WEBHOOK_RETRY_QUEUE: 5,
    BILLING_QUEUE: 1,
    ANALYTICS_ROLLUP_QUEUE: 1,
}


def handle_send_message_retry(ctx: AppContext, payload: dict) -> None:
    ctx.sender.deliver(
        payload["channelType"],
        payload["customerId"],
        payload["content"],
        uuid.UUID(payload["workspaceId"]),
        payload.get("metadata"),
    )


def handle_monthly_grant(ctx: AppContext, payload: dict) -> None:
    ctx.ledger.grant_monthly_credits()


def handle_daily_rollup(ctx: AppContext, payload: dict) -> None:
    with ctx.session_factory() as db:
        run_daily_rollup(db)


HANDLERS: dict[str, Callable[[AppContext, dict], None]] = {
    SEND_MESSAGE_RETRY_JOB: handle_send_message_retry,
    MONTHLY_GRANT_JOB: handle_monthly_grant,
    DAILY_ROLLUP_JOB: handle_daily_rollup,
}


def process_job(ctx: AppContext, job_id) -> str:
    """Run one claimed job and record the outcome. Returns the job's new status."""
    with ctx.session_factory() as db:
        job = db.get(Job, job_id)
        handler = HANDLERS.get(job.name)
        try:
            if handler is None:
                raise LookupError(f"No handler for job {job.name}")
            handler(ctx, job.payload_json or {})
        except Exception as e:
            status = mark_job_failed(db, job, str(e))
            logger.error(
                f"Job failed: {job.name}",
                extra={"context": {"job_id": str(job.id), "queue": job.queue, "attempts": job.attempts, "status": status, "error": str(e)}},
            )
            if status == "FAILED":
                alert = alert_critical if job.queue == BILLING_QUEUE else alert_error
                alert(f"Job {job.name} failed permanently", {"job_id": str(job.id), "queue": job.queue, "error": str(e)[:200]})
            return status

        mark_job_done(db, job)
        logger.info(f"Job completed: {job.name}", extra={"context": {"job_id": str(job.id), "queue": job.queue}})
        return job.status


def claim_job_ids(ctx: AppContext, queue: str, limit: int) -> list:
    with ctx.session_factory() as db:
        return [job.id for job in claim_jobs(db, queue=queue, limit=limit)]


@dataclass
class ScheduledJob:
    queue: str
    name: str
    period_key: Callable[[datetime], Optional[str]]
    ttl_seconds: int


def _daily_rollup_period(now: datetime) -> Optional[str]:
    if now.hour < 2:
        return None
    return now.strftime("%Y-%m-%d")


def _monthly_grant_period(now: datetime) -> Optional[str]:
    if now.day != 1 or (now.hour, now.minute) < (0, 5):
        return None
    return now.strftime("%Y-%m")


SCHEDULE = (
    ScheduledJob(ANALYTICS_ROLLUP_QUEUE, DAILY_ROLLUP_JOB, _daily_rollup_period, 2 * 86400),
    ScheduledJob(BILLING_QUEUE, MONTHLY_GRANT_JOB, _monthly_grant_period, 40 * 86400),
)


def schedule_due_jobs(ctx: AppContext, now: Optional[datetime] = None) -> list[str]:
    """Enqueue each periodic job at most once per period across all replicas."""
    now = now or datetime.now(timezone.utc)
    enqueued = []
    for scheduled in SCHEDULE:
        period = scheduled.period_key(now)
        if period is None:
            continue
        if not ctx.redis.set(f"schedule:{scheduled.name}:{period}", "1", nx=True, ex=scheduled.ttl_seconds):
            continue
        with ctx.session_factory() as db:
            enqueue_job(db, queue=scheduled.queue, name=scheduled.name, payload_json={"period": period})
            db.commit()
        logger.info(f"Scheduled job enqueued: {scheduled.name} ({period})")
        enqueued.append(scheduled.name)
    return enqueued


async def _queue_worker_loop(ctx: AppContext, queue: str, concurrency: int) -> None:
    semaphore = asyncio.Semaphore(concurrency)
    settings = ctx.settings

    async def run(job_id) -> None:
        async with semaphore:
            await asyncio.to_thread(process_job, ctx, job_id)

    while True:
        try:
            await asyncio.sleep(max(settings.worker_interval_seconds, 0.1))
            job_ids = await asyncio.to_thread(claim_job_ids, ctx, queue, settings.worker_batch_size)
            if job_ids:
                await asyncio.gather(*(run(job_id) for job_id in job_ids))
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error(f"{queue} worker loop failed", extra={"context": {"error": str(exc)}})


async def _scheduler_loop(ctx: AppContext, interval_seconds: float = 30.0) -> None:
    while True:
        try:
            await asyncio.to_thread(schedule_due_jobs, ctx)
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error("Scheduler loop failed", extra={"context": {"error": str(exc)}})
            await asyncio.sleep(interval_seconds)


def start_workers(ctx: AppContext) -> list[asyncio.Task]:
    tasks = [
        asyncio.create_task(_queue_worker_loop(ctx, queue, concurrency), name=f"worker:{queue}")
        for queue, concurrency in QUEUE_CONCURRENCY.items()
    ]
    tasks.append(asyncio.create_task(_scheduler_loop(ctx), name="worker:scheduler"))
    logger.info(f"Workers started: {', '.join(QUEUE_CONCURRENCY)}")
    return tasks


async def stop_workers(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
