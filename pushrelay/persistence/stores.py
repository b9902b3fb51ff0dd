from __future__ import annotations

import re
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pushrelay.core.errors import SchemaNotReadyError, StoreError
from pushrelay.domain.delivery import DeliveryEndpoint, PendingNotification
from pushrelay.domain.models import NotificationJob, PushSubscription
from pushrelay.persistence.repos import jobs as jobs_repo
from pushrelay.persistence.repos import subscriptions as subscriptions_repo


_MISSING_RELATION = re.compile(r"relation \S+ does not exist")


def is_missing_table_error(exc: BaseException) -> bool:
    # Let the worker start before migrations by recognizing missing-table errors across drivers.
    message = str(exc).lower()
    if "undefinedtableerror" in message or "no such table" in message:
        return True
    # Only a missing relation counts; a missing database or role is a real outage.
    return _MISSING_RELATION.search(message) is not None


@asynccontextmanager
async def _store_call(
    session_factory: async_sessionmaker[AsyncSession], operation: str
) -> AsyncIterator[AsyncSession]:
    # One session and one commit per call keeps every state transition atomic on its own.
    try:
        async with session_factory() as session:
            yield session
            await session.commit()
    except (SQLAlchemyError, OSError) as exc:
        if is_missing_table_error(exc):
            raise SchemaNotReadyError(f"{operation} failed: {exc}") from exc
        raise StoreError(f"{operation} failed: {exc}") from exc


def _to_pending(row: NotificationJob) -> PendingNotification:
    return PendingNotification(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        body=row.body,
        url=row.url,
        attempts=int(row.attempts or 0),
        created_at=row.created_at,
    )


def _to_endpoint(row: PushSubscription) -> DeliveryEndpoint:
    return DeliveryEndpoint(
        id=row.id,
        user_id=row.user_id,
        endpoint=row.endpoint,
        p256dh=row.p256dh,
        auth=row.auth,
    )


class SqlJobStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_pending_jobs(self, limit: int) -> list[PendingNotification]:
        async with _store_call(self._session_factory, "list_pending_jobs") as session:
            rows = await jobs_repo.list_pending_jobs(session, limit)
            return [_to_pending(row) for row in rows]

    async def mark_attempt(self, job_id: str) -> None:
        async with _store_call(self._session_factory, "mark_attempt") as session:
            await jobs_repo.mark_job_attempt(session, job_id)

    async def mark_sent(self, job_id: str) -> None:
        async with _store_call(self._session_factory, "mark_sent") as session:
            await jobs_repo.mark_job_sent(session, job_id)

    async def mark_failed(self, job_id: str, reason: str) -> None:
        async with _store_call(self._session_factory, "mark_failed") as session:
            await jobs_repo.mark_job_failed(session, job_id, reason)


class SqlEndpointRegistry:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_endpoints_for_user(self, user_id: str) -> list[DeliveryEndpoint]:
        async with _store_call(self._session_factory, "list_endpoints_for_user") as session:
            rows = await subscriptions_repo.list_subscriptions_for_user(session, user_id)
            return [_to_endpoint(row) for row in rows]

    async def delete_endpoint(self, endpoint_id: str) -> None:
        async with _store_call(self._session_factory, "delete_endpoint") as session:
            await subscriptions_repo.delete_subscription(session, endpoint_id)
