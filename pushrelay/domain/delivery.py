from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# Jobs at or above this attempt count are never selected again, whatever their status.
MAX_ATTEMPTS = 10


class JobStatus:
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PendingNotification:
    id: str
    user_id: str
    title: str
    body: str
    url: str | None
    attempts: int
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class DeliveryEndpoint:
    id: str
    user_id: str
    endpoint: str
    p256dh: str
    auth: str

    def subscription_info(self) -> dict[str, object]:
        # Shape expected by Web Push libraries and the browser PushSubscription JSON.
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


class PushPayload(BaseModel):
    """Body delivered to the service worker; field names match the client contract."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str
    body: str
    url: str | None = None
    job_id: str = Field(alias="jobId")

    @classmethod
    def for_job(cls, job: PendingNotification) -> "PushPayload":
        return cls(title=job.title, body=job.body, url=job.url, job_id=job.id)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
