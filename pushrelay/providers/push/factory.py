from __future__ import annotations

from pushrelay.core.config import Settings, get_settings
from pushrelay.core.errors import PushProviderConfigError
from pushrelay.providers.push.base import PushTransport
from pushrelay.providers.push.fake import FakePushTransport
from pushrelay.providers.push.webpush import WebPushTransport


def get_push_transport(settings: Settings | None = None) -> PushTransport:
    settings = settings or get_settings()
    provider = (settings.push_provider or "webpush").lower()

    if provider == "webpush":
        # Missing VAPID keys are not an error here; the worker dead-letters jobs instead.
        return WebPushTransport(settings)
    if provider == "fake":
        return FakePushTransport()

    raise PushProviderConfigError(f"Unsupported push provider: {provider}")
