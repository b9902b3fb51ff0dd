from __future__ import annotations


# Dead-letter reasons written to notification_jobs.last_error for non-retried failures.
CONFIGURATION_ERROR_REASON = "Web push is not configured."
NO_ENDPOINTS_REASON = "No push subscriptions registered for user."
UNKNOWN_DELIVERY_ERROR = "Unknown notification error."


class PushRelayError(Exception):
    """Base error for pushrelay."""


class StoreError(PushRelayError):
    """Job store or endpoint registry call failed."""


class PushProviderConfigError(PushRelayError):
    """Missing or invalid push provider configuration."""


class SchemaNotReadyError(StoreError):
    """Notification tables are missing; migrations have not been applied yet."""
