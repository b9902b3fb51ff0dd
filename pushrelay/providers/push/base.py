from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union

from pushrelay.core.errors import UNKNOWN_DELIVERY_ERROR
from pushrelay.domain.delivery import DeliveryEndpoint, PushPayload


@dataclass(frozen=True, slots=True)
class DeliverySucceeded:
    pass


@dataclass(frozen=True, slots=True)
class EndpointExpired:
    """The push service no longer recognizes the subscription (HTTP 404/410)."""

    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class TransientFailure:
    message: str


DeliveryOutcome = Union[DeliverySucceeded, EndpointExpired, TransientFailure]


def error_message(exc: BaseException) -> str:
    # Prefer the library-provided message attribute, then the string form.
    message = getattr(exc, "message", None) or str(exc)
    return str(message) if message else UNKNOWN_DELIVERY_ERROR


class PushTransport(Protocol):
    def is_configured(self) -> bool:
        ...

    async def send(self, endpoint: DeliveryEndpoint, payload: PushPayload) -> DeliveryOutcome:
        ...
