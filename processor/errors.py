"""Exceptions raised by the status sync engine."""
from typing import Optional


class StatusSyncError(Exception):
    """Base class for status sync failures."""


class DeviceNotFoundError(StatusSyncError):
    """Device id is not present in the store."""

    def __init__(self, device_id: str):
        super().__init__(f"Device not found: {device_id}")
        self.device_id = device_id


class NoCalendarConfiguredError(StatusSyncError):
    """Manual sync requested for a device with no calendar selected."""

    def __init__(self, device_id: str):
        super().__init__(f"No calendars selected for device {device_id}")
        self.device_id = device_id


class InvalidStatusError(StatusSyncError):
    """Status key outside the supported range."""


class ProviderFetchError(StatusSyncError):
    """Calendar provider could not be fetched or parsed."""


class WebhookError(StatusSyncError):
    """Base class for webhook delivery failures."""


class WebhookDeliveryError(WebhookError):
    """Retryable failure that persisted through every attempt."""

    def __init__(self, attempts: int, status_code: Optional[int] = None,
                 reason: str = ''):
        detail = f"status {status_code}" if status_code else reason
        super().__init__(
            f"Webhook delivery failed after {attempts} attempts: {detail}"
        )
        self.attempts = attempts
        self.status_code = status_code


class WebhookRejectedError(WebhookError):
    """Non-retryable non-2xx response from the webhook."""

    def __init__(self, status_code: int, body: str = ''):
        super().__init__(
            f"Webhook responded {status_code}: {body or 'no body'}"
        )
        self.status_code = status_code
        self.body = body


class WebhookNotConfiguredError(WebhookError):
    """Device has no webhook URL to push to."""

    def __init__(self, device_id: str):
        super().__init__(f"No webhook URL stored for device {device_id}")
        self.device_id = device_id
