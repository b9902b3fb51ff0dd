from __future__ import annotations

from typing import Protocol, Sequence

from pushrelay.domain.delivery import DeliveryEndpoint, PendingNotification


class JobStore(Protocol):
    """Durable notification queue; every method is one atomic external call.

    Implementations raise ``StoreError`` when the backing store fails.
    """

    async def list_pending_jobs(self, limit: int) -> Sequence[PendingNotification]:
        ...

    async def mark_attempt(self, job_id: str) -> None:
        ...

    async def mark_sent(self, job_id: str) -> None:
        ...

    async def mark_failed(self, job_id: str, reason: str) -> None:
        ...


class EndpointRegistry(Protocol):
    async def list_endpoints_for_user(self, user_id: str) -> Sequence[DeliveryEndpoint]:
        ...

    async def delete_endpoint(self, endpoint_id: str) -> None:
        ...
