from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from pushrelay.core.errors import CONFIGURATION_ERROR_REASON, NO_ENDPOINTS_REASON
from pushrelay.domain.delivery import MAX_ATTEMPTS, JobStatus
from pushrelay.domain.models import NotificationJob, PushSubscription
from pushrelay.persistence.repos.jobs import enqueue_notification
from pushrelay.persistence.repos.subscriptions import upsert_subscription
from pushrelay.providers.push.base import EndpointExpired, TransientFailure
from pushrelay.providers.push.fake import FakePushTransport
from pushrelay.workers.notification_worker import build_orchestrator


_BASE = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


async def _jobs_by_user(session_factory) -> dict[str, NotificationJob]:
    async with session_factory() as session:
        rows = (await session.execute(select(NotificationJob))).scalars().all()
    return {row.user_id: row for row in rows}


async def _subscription_endpoints(session_factory) -> set[str]:
    async with session_factory() as session:
        rows = (await session.execute(select(PushSubscription))).scalars().all()
    return {row.endpoint for row in rows}


@pytest.mark.asyncio
async def test_full_cycle_against_database(session_factory) -> None:
    async with session_factory() as session:
        await upsert_subscription(session, user_id="alice", endpoint="https://push.test/alice-old", p256dh="k", auth="a")
        await upsert_subscription(session, user_id="alice", endpoint="https://push.test/alice-new", p256dh="k", auth="a")
        bob_new = await upsert_subscription(session, user_id="bob", endpoint="https://push.test/bob-1", p256dh="k", auth="a")
        bob_old = await upsert_subscription(session, user_id="bob", endpoint="https://push.test/bob-2", p256dh="k", auth="a")
        # Devices are tried newest first: bob-1 fails with m1, then bob-2 with m2.
        bob_new.created_at = _BASE + timedelta(minutes=5)
        bob_old.created_at = _BASE
        for offset, user_id in enumerate(("alice", "bob", "carol")):
            await enqueue_notification(
                session,
                user_id=user_id,
                title="New direct message",
                body=f"hello {user_id}",
                url="/dm/thread-1",
                created_at=_BASE + timedelta(seconds=offset),
            )
        await session.commit()

    transport = FakePushTransport()
    transport.script("https://push.test/alice-old", EndpointExpired(status_code=410))
    transport.script("https://push.test/bob-1", TransientFailure("m1"))
    transport.script("https://push.test/bob-2", TransientFailure("m2"))
    orchestrator = build_orchestrator(session_factory=session_factory, transport=transport)

    summary = await orchestrator.run_batch()

    assert summary.status == "ok"
    assert (summary.selected, summary.sent, summary.failed, summary.endpoints_removed) == (3, 1, 2, 1)
    jobs = await _jobs_by_user(session_factory)
    assert jobs["alice"].status == JobStatus.SENT
    assert jobs["alice"].last_error is None
    assert jobs["bob"].status == JobStatus.FAILED
    assert jobs["bob"].last_error == "m2"
    assert jobs["carol"].status == JobStatus.FAILED
    assert jobs["carol"].last_error == NO_ENDPOINTS_REASON
    assert all(job.attempts == 1 for job in jobs.values())
    assert all(job.processed_at is not None for job in jobs.values())
    assert "https://push.test/alice-old" not in await _subscription_endpoints(session_factory)

    # Nothing is left to select; terminal jobs stay put.
    again = await orchestrator.run_batch()
    assert again.status == "empty"


@pytest.mark.asyncio
async def test_unconfigured_transport_dead_letters_batch(session_factory) -> None:
    async with session_factory() as session:
        await upsert_subscription(session, user_id="alice", endpoint="https://push.test/a", p256dh="k", auth="a")
        for offset in range(3):
            await enqueue_notification(
                session,
                user_id="alice",
                title="t",
                body="b",
                created_at=_BASE + timedelta(seconds=offset),
            )
        await session.commit()
    transport = FakePushTransport(configured=False)
    orchestrator = build_orchestrator(session_factory=session_factory, transport=transport)

    summary = await orchestrator.run_batch()

    assert summary.failed == 3
    async with session_factory() as session:
        rows = (await session.execute(select(NotificationJob))).scalars().all()
    assert {row.last_error for row in rows} == {CONFIGURATION_ERROR_REASON}
    assert {row.attempts for row in rows} == {1}
    assert transport.sent == []
    assert await _subscription_endpoints(session_factory) == {"https://push.test/a"}


@pytest.mark.asyncio
async def test_attempts_never_exceed_cap_across_cycles(session_factory) -> None:
    async with session_factory() as session:
        job = await enqueue_notification(session, user_id="dave", title="t", body="b", created_at=_BASE)
        # Simulate a job repeatedly abandoned mid-cycle (crash after the attempt mark).
        job.attempts = MAX_ATTEMPTS - 1
        await session.commit()
    orchestrator = build_orchestrator(session_factory=session_factory, transport=FakePushTransport())

    first = await orchestrator.run_batch()
    second = await orchestrator.run_batch()

    assert first.selected == 1
    assert second.status == "empty"
    jobs = await _jobs_by_user(session_factory)
    assert jobs["dave"].attempts == MAX_ATTEMPTS
