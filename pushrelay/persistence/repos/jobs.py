from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.domain.delivery import MAX_ATTEMPTS, JobStatus
from pushrelay.domain.models import NotificationJob


# Notification bodies are previews; full content stays in the source message.
_BODY_PREVIEW_CHARS = 140


def new_job_id() -> str:
    return f"ntf_{uuid4().hex}"


def preview_body(body: str) -> str:
    normalized = body.strip()
    if len(normalized) <= _BODY_PREVIEW_CHARS:
        return normalized
    return f"{normalized[: _BODY_PREVIEW_CHARS - 3]}..."


async def enqueue_notification(
    session: AsyncSession,
    *,
    user_id: str,
    title: str,
    body: str,
    url: str | None = None,
    created_at: datetime | None = None,
) -> NotificationJob:
    # Producers only ever insert pending rows; attempts and terminal states belong to the worker.
    job = NotificationJob(
        id=new_job_id(),
        user_id=user_id,
        title=title,
        body=preview_body(body),
        url=url,
        status=JobStatus.PENDING,
        attempts=0,
    )
    if created_at is not None:
        job.created_at = created_at
    session.add(job)
    return job


async def list_pending_jobs(session: AsyncSession, limit: int) -> list[NotificationJob]:
    # FIFO by creation time so early jobs are not starved under sustained load.
    result = await session.execute(
        select(NotificationJob)
        .where(NotificationJob.status == JobStatus.PENDING, NotificationJob.attempts < MAX_ATTEMPTS)
        .order_by(NotificationJob.created_at.asc(), NotificationJob.id.asc())
        .limit(max(1, int(limit)))
    )
    return list(result.scalars().all())


async def mark_job_attempt(session: AsyncSession, job_id: str) -> None:
    # Increment in SQL so concurrent writers never lose an attempt.
    await session.execute(
        update(NotificationJob)
        .where(NotificationJob.id == job_id)
        .values(attempts=NotificationJob.attempts + 1)
    )


async def mark_job_sent(session: AsyncSession, job_id: str) -> None:
    await session.execute(
        update(NotificationJob)
        .where(NotificationJob.id == job_id)
        .values(status=JobStatus.SENT, processed_at=func.now(), last_error=None)
    )


async def mark_job_failed(session: AsyncSession, job_id: str, reason: str) -> None:
    await session.execute(
        update(NotificationJob)
        .where(NotificationJob.id == job_id)
        .values(status=JobStatus.FAILED, processed_at=func.now(), last_error=reason)
    )


async def get_job(session: AsyncSession, job_id: str) -> NotificationJob | None:
    result = await session.execute(select(NotificationJob).where(NotificationJob.id == job_id))
    return result.scalar_one_or_none()
