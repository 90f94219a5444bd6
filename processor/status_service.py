"""Manual and automation status changes."""
import logging
from typing import Optional

from processor.errors import (
    DeviceNotFoundError,
    InvalidStatusError,
    WebhookNotConfiguredError,
)
from processor.models import MAX_STATUS_KEY, MIN_STATUS_KEY, ResolvedStatus
from processor.normalizer import epoch_ms_now

logger = logging.getLogger(__name__)


class StatusService:
    """Sets a device status directly, overriding the calendar."""

    def __init__(self, store, pusher, clock=epoch_ms_now):
        self.store = store
        self.pusher = pusher
        self.clock = clock

    def set_status(self, device_id: str, status_key: int,
                   status_label: Optional[str] = None,
                   source: str = 'Manual') -> ResolvedStatus:
        """
        Persist and push a status chosen by a person or an automation.

        Clears the event fence, so the calendar only takes over again at
        the next event boundary. The status also becomes the preferred one,
        so a key outside the device's status table still has a label to
        fall back to.

        Raises:
            InvalidStatusError: If status_key is outside 1..12
            DeviceNotFoundError: If the device does not exist
            WebhookNotConfiguredError: If the device has no webhook URL;
                the new status stays persisted
            WebhookError: If the push fails; the new status stays persisted
        """
        if isinstance(status_key, bool) or not isinstance(status_key, int) or not (
                MIN_STATUS_KEY <= status_key <= MAX_STATUS_KEY):
            raise InvalidStatusError(f"Invalid status key: {status_key}")

        device = self.store.get_device(device_id)
        if device is None:
            raise DeviceNotFoundError(device_id)

        label = status_label or next(
            (s.label for s in device.statuses if s.key == status_key),
            f"Status {status_key}"
        )
        status = ResolvedStatus(key=status_key, label=label)
        now = self.clock()

        updates = {
            'active_status_key': status.key,
            'active_status_label': status.label,
            'active_status_source': source,
            'active_event_ends_at': None,
            'preferred_status_key': status.key,
            'preferred_status_label': status.label,
            'updated_at': now,
        }
        self.store.update_device(device_id, updates)
        for attribute, value in updates.items():
            setattr(device.active, attribute, value)

        logger.info(
            f"Device {device_id} status set to {status.key} ({status.label}) by {source}",
            extra={'device_id': device_id}
        )
        if not device.webhook_url:
            raise WebhookNotConfiguredError(device_id)
        self.pusher.push_status(device, status, source, now)
        return status
