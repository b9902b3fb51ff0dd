from __future__ import annotations

import asyncio
import logging

from pywebpush import WebPushException, webpush

from pushrelay.core.config import Settings, get_settings
from pushrelay.domain.delivery import DeliveryEndpoint, PushPayload
from pushrelay.providers.push.base import (
    DeliveryOutcome,
    DeliverySucceeded,
    EndpointExpired,
    TransientFailure,
    error_message,
)


logger = logging.getLogger(__name__)

# Push services answer 404/410 once a browser drops or rotates its subscription.
EXPIRED_STATUS_CODES = frozenset({404, 410})


def _response_status(exc: WebPushException) -> int | None:
    # requests.Response is falsy for 4xx/5xx, so compare against None explicitly.
    response = getattr(exc, "response", None)
    if response is None:
        return None
    status = getattr(response, "status_code", None)
    return int(status) if isinstance(status, int) else None


def classify_webpush_error(exc: Exception) -> DeliveryOutcome:
    if isinstance(exc, WebPushException):
        status = _response_status(exc)
        if status in EXPIRED_STATUS_CODES:
            return EndpointExpired(status_code=status)
        if status is not None:
            return TransientFailure(f"Push service rejected delivery ({status}): {error_message(exc)}")
    return TransientFailure(error_message(exc))


class WebPushTransport:
    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._subject = (settings.vapid_subject or "").strip()
        self._public_key = (settings.vapid_public_key or "").strip()
        self._private_key = (settings.vapid_private_key or "").strip()
        self._ttl = max(0, int(settings.push_ttl_s))
        self._timeout = max(0.1, float(settings.push_timeout_s))

    def is_configured(self) -> bool:
        return bool(self._subject and self._public_key and self._private_key)

    def _send_sync(self, endpoint: DeliveryEndpoint, body: str) -> None:
        webpush(
            subscription_info=endpoint.subscription_info(),
            data=body,
            vapid_private_key=self._private_key,
            # pywebpush mutates the claims dict (aud/exp), so hand it a fresh one per call.
            vapid_claims={"sub": self._subject},
            ttl=self._ttl,
            timeout=self._timeout,
        )

    async def send(self, endpoint: DeliveryEndpoint, payload: PushPayload) -> DeliveryOutcome:
        # pywebpush is blocking (requests); keep the event loop free while the push service answers.
        try:
            await asyncio.to_thread(self._send_sync, endpoint, payload.to_json())
        except Exception as exc:  # noqa: BLE001 - every delivery failure becomes an outcome value.
            outcome = classify_webpush_error(exc)
            logger.debug("web push delivery failed endpoint_id=%s outcome=%r", endpoint.id, outcome)
            return outcome
        return DeliverySucceeded()
