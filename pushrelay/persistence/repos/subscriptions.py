from __future__ import annotations

from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.domain.models import PushSubscription


async def list_subscriptions_for_user(session: AsyncSession, user_id: str) -> list[PushSubscription]:
    # Newest devices first; the worker still attempts every row.
    result = await session.execute(
        select(PushSubscription)
        .where(PushSubscription.user_id == user_id)
        .order_by(PushSubscription.created_at.desc(), PushSubscription.id.desc())
    )
    return list(result.scalars().all())


async def delete_subscription(session: AsyncSession, subscription_id: str) -> int:
    result = await session.execute(delete(PushSubscription).where(PushSubscription.id == subscription_id))
    return int(result.rowcount or 0)


async def upsert_subscription(
    session: AsyncSession,
    *,
    user_id: str,
    endpoint: str,
    p256dh: str,
    auth: str,
    user_agent: str | None = None,
) -> PushSubscription:
    # Re-subscribing the same browser rotates keys on the existing row instead of duplicating it.
    result = await session.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = PushSubscription(
            id=f"psub_{uuid4().hex}",
            user_id=user_id,
            endpoint=endpoint,
            p256dh=p256dh,
            auth=auth,
            user_agent=user_agent,
        )
        session.add(row)
        return row
    row.p256dh = p256dh
    row.auth = auth
    row.user_agent = user_agent
    row.updated_at = func.now()
    return row
