"""Client for public iCalendar (ICS) feeds."""
import logging
from typing import List, Optional

import requests
from ics import Calendar

from processor.errors import ProviderFetchError
from processor.models import ProviderEvent
from processor.retry import RetryPolicy, is_success

logger = logging.getLogger(__name__)


class IcsFeedClient:
    """Downloads an ICS feed and returns its VEVENTs as provider records."""

    def __init__(self, timeout: int = 30,
                 retry_policy: Optional[RetryPolicy] = None):
        """
        Initialize the feed client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            retry_policy: Attempts and backoff (default: 3 attempts, 1s-4s)
        """
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()

    def fetch_events(self, url: str) -> List[ProviderEvent]:
        """
        Fetch and parse the feed.

        Args:
            url: ICS feed URL (webcal:// is treated as https://)

        Returns:
            List of ProviderEvent records tagged 'ics'

        Raises:
            ProviderFetchError: If the feed cannot be downloaded or parsed
        """
        if url.startswith('webcal://'):
            url = 'https://' + url[len('webcal://'):]

        ics_text = self._fetch_ics_text(url)
        events = self._parse_events(ics_text)

        logger.info(f"Fetched {len(events)} events from ICS feed")
        return events

    def _fetch_ics_text(self, url: str) -> str:
        def send() -> requests.Response:
            return requests.get(url, timeout=self.timeout)

        try:
            response = self.retry_policy.execute(send, description='ICS fetch')
        except requests.RequestException as e:
            raise ProviderFetchError(f"ICS fetch failed: {e}") from e

        if not is_success(response.status_code):
            raise ProviderFetchError(f"ICS fetch failed: HTTP {response.status_code}")
        return response.text

    def _parse_events(self, ics_text: str) -> List[ProviderEvent]:
        try:
            calendar = Calendar(ics_text)
        except Exception as e:
            raise ProviderFetchError(f"ICS parse failed: {e}") from e

        return [
            ProviderEvent(provider='ics', payload=event)
            for event in sorted(calendar.events, key=lambda e: e.begin)
        ]
