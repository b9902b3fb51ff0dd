from __future__ import annotations

from dataclasses import dataclass, field

from pushrelay.domain.delivery import DeliveryEndpoint, PushPayload
from pushrelay.providers.push.base import DeliveryOutcome, DeliverySucceeded


@dataclass(slots=True)
class SentPush:
    endpoint_id: str
    endpoint: str
    payload: PushPayload


@dataclass
class FakePushTransport:
    """In-process transport with scripted outcomes keyed by endpoint address.

    Unscripted endpoints succeed, so local runs deliver without a push service.
    """

    configured: bool = True
    outcomes: dict[str, DeliveryOutcome | Exception] = field(default_factory=dict)
    sent: list[SentPush] = field(default_factory=list)

    def is_configured(self) -> bool:
        return self.configured

    def script(self, endpoint: str, outcome: DeliveryOutcome | Exception) -> None:
        self.outcomes[endpoint] = outcome

    async def send(self, endpoint: DeliveryEndpoint, payload: PushPayload) -> DeliveryOutcome:
        self.sent.append(SentPush(endpoint_id=endpoint.id, endpoint=endpoint.endpoint, payload=payload))
        outcome = self.outcomes.get(endpoint.endpoint, DeliverySucceeded())
        # Scripted exceptions model transports that break the outcome contract.
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
