"""Durable job queue on the `jobs` table.

Generalises the single-purpose outbox: every row names its queue, job,
payload and retry policy. Claiming uses FOR UPDATE SKIP LOCKED so several
workers can drain one queue without double-processing (ignored on SQLite).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from relay.models import Job
from relay.models.enums import JobStatus

WEBHOOK_RETRY_QUEUE = "webhook-retry"
BILLING_QUEUE = "billing"
ANALYTICS_ROLLUP_QUEUE = "analytics-rollup"

SEND_MESSAGE_RETRY_JOB = "send-message-retry"
MONTHLY_GRANT_JOB = "monthly-credit-grant"
DAILY_ROLLUP_JOB = "daily-rollup"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def enqueue_job(
    db: Session,
    *,
    queue: str,
    name: str,
    payload_json: dict[str, Any],
    max_attempts: int = 3,
    backoff_seconds: int = 5,
    delay_seconds: float = 0,
) -> Job:
    now = _now()
    job = Job(
        queue=queue,
        name=name,
        payload_json=payload_json,
        status=JobStatus.PENDING.value,
        attempts=0,
        max_attempts=max_attempts,
        backoff_seconds=backoff_seconds,
        next_attempt_at=now + timedelta(seconds=delay_seconds) if delay_seconds else None,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.flush()
    return job


def claim_jobs(db: Session, *, queue: str, limit: int = 10) -> list[Job]:
    """Move due PENDING jobs to PROCESSING, counting the attempt, and commit."""
    now = _now()
    jobs = (
        db.query(Job)
        .filter(
            Job.queue == queue,
            Job.status == JobStatus.PENDING.value,
            or_(Job.next_attempt_at.is_(None), Job.next_attempt_at <= now),
        )
        .order_by(Job.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for job in jobs:
        job.status = JobStatus.PROCESSING.value
        job.attempts += 1
        job.updated_at = now
    db.commit()
    return jobs


def retry_delay_seconds(job: Job) -> int:
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return job.backoff_seconds * 2 ** max(job.attempts - 1, 0)


def mark_job_done(db: Session, job: Job) -> None:
    job.status = JobStatus.DONE.value
    job.last_error = None
    job.updated_at = _now()
    db.commit()


def mark_job_failed(db: Session, job: Job, error: str) -> str:
    """Schedule the next attempt or give up once attempts are exhausted. Returns the new status."""
    now = _now()
    job.last_error = error[:2000]
    job.updated_at = now
    if job.attempts >= job.max_attempts:
        job.status = JobStatus.FAILED.value
    else:
        job.status = JobStatus.PENDING.value
        job.next_attempt_at = now + timedelta(seconds=retry_delay_seconds(job))
    db.commit()
    return job.status
