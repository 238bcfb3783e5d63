"""Durable audit job queue helpers (Redis/RQ)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from redis import Redis
from rq import Queue, Retry
from rq.job import Job
from sqlalchemy import select

import database
from config import settings
from models.audit import Audit
from services.records import IN_PROGRESS_STATUSES

logger = logging.getLogger(__name__)

AUDIT_QUEUE_NAME = "audit_jobs"
STALLED_AUDIT_MESSAGE = "Audit execution was interrupted. Re-run the audit."


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_audit_queue(connection: Optional[Redis] = None) -> Queue:
    """Return the configured audit queue."""
    return Queue(
        name=AUDIT_QUEUE_NAME,
        connection=connection or get_redis_connection(),
        default_timeout=1800,
    )


def enqueue_audit_job(audit_id: str) -> Job:
    """Enqueue a site audit job with retry/timeouts for durability."""
    queue = get_audit_queue()
    return queue.enqueue(
        "services.audit.process_site_audit_job",
        audit_id,
        job_id=f"audit:{audit_id}",
        retry=Retry(max=3, interval=[15, 60, 180]),
        job_timeout=1800,
        result_ttl=86400,
        failure_ttl=86400,
    )


async def recover_stalled_audits(max_age_minutes: int = 120) -> int:
    """Mark stale in-progress audits as failed after restarts/worker interruptions."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=max(max_age_minutes, 1))
    async with database.async_session_maker() as db:
        result = await db.execute(
            select(Audit).where(
                Audit.status.in_(IN_PROGRESS_STATUSES),
                Audit.created_at < cutoff,
            )
        )
        audits = result.scalars().all()
        for audit in audits:
            audit.status = "failed"
            audit.overall_score = None
            audit.status_message = "Audit failed"
            audit.error_message = STALLED_AUDIT_MESSAGE
            audit.completed_at = datetime.now(timezone.utc)
        if audits:
            await db.commit()
            logger.warning("Marked %s stalled audit(s) as failed", len(audits))
        return len(audits)
