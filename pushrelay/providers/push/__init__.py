from pushrelay.providers.push.base import (
    DeliveryOutcome,
    DeliverySucceeded,
    EndpointExpired,
    PushTransport,
    TransientFailure,
)
from pushrelay.providers.push.factory import get_push_transport

__all__ = [
    "DeliveryOutcome",
    "DeliverySucceeded",
    "EndpointExpired",
    "PushTransport",
    "TransientFailure",
    "get_push_transport",
]
