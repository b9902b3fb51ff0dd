from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, text

from pushrelay.core.errors import SchemaNotReadyError, StoreError
from pushrelay.domain.delivery import MAX_ATTEMPTS, JobStatus
from pushrelay.domain.models import NotificationJob, PushSubscription
from pushrelay.persistence.db import build_engine, build_session_factory, check_connection
from pushrelay.persistence.repos.jobs import enqueue_notification, get_job
from pushrelay.persistence.repos.subscriptions import upsert_subscription
from pushrelay.persistence.stores import SqlEndpointRegistry, SqlJobStore, is_missing_table_error


_BASE = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


async def _seed_jobs(session_factory, specs: list[tuple[str, int, int]]) -> dict[str, str]:
    # specs: (label, created offset seconds, attempts)
    ids: dict[str, str] = {}
    async with session_factory() as session:
        for label, offset_s, attempts in specs:
            job = await enqueue_notification(
                session,
                user_id="user-1",
                title=f"title {label}",
                body=f"body {label}",
                created_at=_BASE + timedelta(seconds=offset_s),
            )
            job.attempts = attempts
            ids[label] = job.id
        await session.commit()
    return ids


async def _load(session_factory, job_id: str) -> NotificationJob:
    async with session_factory() as session:
        job = await get_job(session, job_id)
        assert job is not None
        return job


@pytest.mark.asyncio
async def test_list_pending_is_fifo_capped_and_limited(session_factory) -> None:
    ids = await _seed_jobs(
        session_factory,
        [("late", 30, 0), ("early", 0, 0), ("capped", 5, MAX_ATTEMPTS), ("mid", 10, MAX_ATTEMPTS - 1)],
    )
    store = SqlJobStore(session_factory)

    pending = await store.list_pending_jobs(10)
    assert [job.id for job in pending] == [ids["early"], ids["mid"], ids["late"]]
    assert pending[0].title == "title early"
    assert pending[1].attempts == MAX_ATTEMPTS - 1

    limited = await store.list_pending_jobs(2)
    assert [job.id for job in limited] == [ids["early"], ids["mid"]]


@pytest.mark.asyncio
async def test_terminal_jobs_are_not_selected(session_factory) -> None:
    ids = await _seed_jobs(session_factory, [("a", 0, 0), ("b", 1, 0), ("c", 2, 0)])
    store = SqlJobStore(session_factory)

    await store.mark_sent(ids["a"])
    await store.mark_failed(ids["b"], "No push subscriptions registered for user.")

    pending = await store.list_pending_jobs(10)
    assert [job.id for job in pending] == [ids["c"]]


@pytest.mark.asyncio
async def test_mark_attempt_increments_by_one(session_factory) -> None:
    ids = await _seed_jobs(session_factory, [("a", 0, 0)])
    store = SqlJobStore(session_factory)

    await store.mark_attempt(ids["a"])
    await store.mark_attempt(ids["a"])

    job = await _load(session_factory, ids["a"])
    assert job.attempts == 2
    assert job.status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_mark_sent_clears_error_and_stamps_processed_at(session_factory) -> None:
    ids = await _seed_jobs(session_factory, [("a", 0, 0)])
    store = SqlJobStore(session_factory)

    await store.mark_failed(ids["a"], "m1")
    await store.mark_sent(ids["a"])
    # Overlapping batches may repeat the terminal write; it must stay a plain overwrite.
    await store.mark_sent(ids["a"])

    job = await _load(session_factory, ids["a"])
    assert job.status == JobStatus.SENT
    assert job.last_error is None
    assert job.processed_at is not None


@pytest.mark.asyncio
async def test_mark_failed_stores_reason(session_factory) -> None:
    ids = await _seed_jobs(session_factory, [("a", 0, 3)])
    store = SqlJobStore(session_factory)

    await store.mark_failed(ids["a"], "m2")
    await store.mark_failed(ids["a"], "m2")

    job = await _load(session_factory, ids["a"])
    assert job.status == JobStatus.FAILED
    assert job.last_error == "m2"
    assert job.attempts == 3
    assert job.processed_at is not None


@pytest.mark.asyncio
async def test_registry_lists_user_endpoints_and_deletes(session_factory) -> None:
    async with session_factory() as session:
        first = await upsert_subscription(
            session, user_id="user-1", endpoint="https://push.example.test/a", p256dh="k1", auth="a1"
        )
        await upsert_subscription(
            session, user_id="user-2", endpoint="https://push.example.test/b", p256dh="k2", auth="a2"
        )
        await session.commit()
    registry = SqlEndpointRegistry(session_factory)

    endpoints = await registry.list_endpoints_for_user("user-1")
    assert [endpoint.id for endpoint in endpoints] == [first.id]
    assert endpoints[0].subscription_info() == {
        "endpoint": "https://push.example.test/a",
        "keys": {"p256dh": "k1", "auth": "a1"},
    }

    await registry.delete_endpoint(first.id)
    # Racing workers may delete the same endpoint twice.
    await registry.delete_endpoint(first.id)
    assert await registry.list_endpoints_for_user("user-1") == []
    assert len(await registry.list_endpoints_for_user("user-2")) == 1


@pytest.mark.asyncio
async def test_upsert_subscription_rotates_keys_in_place(session_factory) -> None:
    async with session_factory() as session:
        original = await upsert_subscription(
            session, user_id="user-1", endpoint="https://push.example.test/a", p256dh="old", auth="old"
        )
        await session.commit()
    async with session_factory() as session:
        refreshed = await upsert_subscription(
            session, user_id="user-1", endpoint="https://push.example.test/a", p256dh="new", auth="new"
        )
        await session.commit()
    assert refreshed.id == original.id

    async with session_factory() as session:
        rows = (await session.execute(select(PushSubscription))).scalars().all()
    assert len(rows) == 1
    assert rows[0].p256dh == "new"


@pytest.mark.asyncio
async def test_missing_tables_raise_schema_not_ready(session_factory) -> None:
    async with session_factory() as session:
        await session.execute(text("DROP TABLE notification_jobs"))
        await session.commit()

    with pytest.raises(SchemaNotReadyError):
        await SqlJobStore(session_factory).list_pending_jobs(5)


@pytest.mark.asyncio
async def test_unreachable_database_raises_store_error(tmp_path) -> None:
    # A directory path cannot be opened as a SQLite database file.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}")
    try:
        with pytest.raises(StoreError):
            await SqlJobStore(build_session_factory(engine)).mark_attempt("ntf_missing")
        with pytest.raises(StoreError):
            await check_connection(engine)
    finally:
        await engine.dispose()


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ('<class \'asyncpg.exceptions.UndefinedTableError\'>: relation "notification_jobs" does not exist', True),
        ("(sqlite3.OperationalError) no such table: notification_jobs", True),
        ('database "pushrelay" does not exist', False),
        ('role "pushrelay" does not exist', False),
        ("connection refused", False),
    ],
)
def test_only_missing_relations_count_as_schema_not_ready(message: str, expected: bool) -> None:
    assert is_missing_table_error(RuntimeError(message)) is expected
