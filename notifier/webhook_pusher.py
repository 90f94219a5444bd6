"""Delivers resolved statuses to the display device's webhook."""
import logging
from typing import Any, Dict, Optional

import requests

from processor.errors import WebhookDeliveryError, WebhookRejectedError
from processor.formatter import format_timestamp
from processor.models import DeviceRecord, ResolvedStatus
from processor.normalizer import epoch_ms_now
from processor.retry import RetryPolicy, is_success

logger = logging.getLogger(__name__)


def build_merge_variables(device: DeviceRecord, status: ResolvedStatus,
                          source: Optional[str], now_ms: int) -> Dict[str, Any]:
    """
    Build the merge variables rendered by the device.

    Args:
        device: Device whose display settings apply
        status: Status being pushed
        source: Human readable origin, e.g. 'Google Calendar'
        now_ms: Time shown as last updated

    Returns:
        Dictionary of merge variables
    """
    label = status.label
    if not label:
        label = next(
            (s.label for s in device.statuses if s.key == status.key), ''
        )
    display = device.display

    return {
        'status_text': label,
        'show_last_updated': display.show_last_updated,
        'show_status_source': display.show_status_source,
        'status_source': source or device.active.active_status_source or 'Calendar',
        'updated_at': format_timestamp(
            now_ms, display.timezone, display.date_format, display.time_format
        ),
    }


class WebhookPusher:
    """POSTs merge variables to a webhook with retry on transient failure."""

    def __init__(self, timeout: int = 10,
                 retry_policy: Optional[RetryPolicy] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize the pusher.

        Args:
            timeout: Per-attempt HTTP timeout in seconds (default: 10)
            retry_policy: Attempts and backoff (default: 3 attempts, 1s-4s)
            session: HTTP session to reuse across pushes
        """
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.session = session or requests.Session()

    def push(self, url: str, merge_variables: Dict[str, Any]) -> requests.Response:
        """
        Send one payload, replacing whatever the device currently shows.

        Raises:
            WebhookDeliveryError: 5xx, 429 or transport errors on every attempt
            WebhookRejectedError: Any other non-2xx response
        """
        payload = {
            'merge_variables': merge_variables,
            'merge_strategy': 'replace',
        }

        def send() -> requests.Response:
            return self.session.post(url, json=payload, timeout=self.timeout)

        attempts = self.retry_policy.max_attempts
        try:
            response = self.retry_policy.execute(send, description='webhook push')
        except requests.RequestException as e:
            raise WebhookDeliveryError(attempts, reason=str(e)) from e

        if is_success(response.status_code):
            return response
        if self.retry_policy.retryable(response.status_code):
            raise WebhookDeliveryError(attempts, status_code=response.status_code)
        raise WebhookRejectedError(response.status_code, response.text)

    def push_status(self, device: DeviceRecord, status: ResolvedStatus,
                    source: Optional[str], now_ms: Optional[int] = None) -> bool:
        """
        Push a status to the device's webhook if it has one.

        Returns:
            True if a push was delivered, False if there was nothing to push
        """
        if not status.key or not device.webhook_url:
            logger.info(
                f"Skipping push for device {device.device_id}: "
                f"no status key or webhook URL"
            )
            return False

        if now_ms is None:
            now_ms = epoch_ms_now()
        merge_variables = build_merge_variables(device, status, source, now_ms)
        self.push(device.webhook_url, merge_variables)
        logger.info(
            f"Pushed status {status.key} ({merge_variables['status_text']}) "
            f"to device {device.device_id}"
        )
        return True
