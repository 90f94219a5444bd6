"""Normalizer turning provider event records into NormalizedEvent objects."""
import logging
import re
from datetime import date, datetime, time, timezone
from typing import Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from processor.models import NormalizedEvent, ProviderEvent

logger = logging.getLogger(__name__)


VIDEO_LINK_RE = re.compile(
    r'(zoom\.us|teams\.microsoft\.com|meet\.google\.com|webex\.com|'
    r'gotomeeting\.com|bluejeans\.com|ringcentral\.com|whereby\.com|'
    r'join\.skype\.com|chime\.aws|hopin\.com|join\.me)',
    re.IGNORECASE
)


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(value.timestamp() * 1000)


def epoch_ms_now() -> int:
    return to_epoch_ms(datetime.now(timezone.utc))


def resolve_zone(name: Optional[str]) -> ZoneInfo:
    """Return the named zone, falling back to UTC for unknown names."""
    if not name:
        return ZoneInfo('UTC')
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', using UTC")
        return ZoneInfo('UTC')


class EventNormalizer:
    """Parses Google, Microsoft Graph and ICS records into one shape.

    Every parser fails closed: a record whose start or end cannot be
    parsed is dropped instead of reaching classification.
    """

    PROVIDERS = ('google', 'outlook', 'ics')

    def __init__(self, timezone_name: str = 'UTC',
                 detect_video_links: bool = False):
        """
        Initialize the normalizer.

        Args:
            timezone_name: Zone used to anchor date-only (all-day) values
            detect_video_links: Whether to look for meeting links at all
        """
        self.zone = resolve_zone(timezone_name)
        self.detect_video_links = detect_video_links
        self._parsers: Dict[str, Callable] = {
            'google': self._parse_google,
            'outlook': self._parse_outlook,
            'ics': self._parse_ics,
        }

    def normalize_events(
        self, provider_events: Iterable[ProviderEvent]
    ) -> List[NormalizedEvent]:
        """
        Normalize a batch of provider records, dropping unparsable ones.

        Args:
            provider_events: Tagged provider records

        Returns:
            List of NormalizedEvent objects
        """
        normalized = []
        total = 0

        for provider_event in provider_events:
            total += 1
            event = self.normalize(provider_event)
            if event:
                normalized.append(event)

        logger.info(
            f"Normalized {len(normalized)} events out of {total} records"
        )
        return normalized

    def normalize(self, provider_event: ProviderEvent) -> Optional[NormalizedEvent]:
        """
        Normalize a single tagged provider record.

        Returns:
            NormalizedEvent or None if the record cannot be used
        """
        parser = self._parsers.get(provider_event.provider)
        if parser is None:
            logger.warning(f"Unknown provider '{provider_event.provider}'")
            return None

        try:
            event = parser(provider_event.payload)
        except (AttributeError, TypeError, ValueError, OverflowError) as e:
            logger.warning(
                f"Dropping malformed {provider_event.provider} event: {e}"
            )
            return None

        if event and event.end < event.start:
            logger.warning(f"Dropping event '{event.title}' ending before it starts")
            return None
        return event

    def _parse_google(self, payload: dict) -> Optional[NormalizedEvent]:
        """Parse a Google Calendar API event resource."""
        if not isinstance(payload, dict):
            return None
        start = payload.get('start') or {}
        end = payload.get('end') or {}

        is_all_day = bool(start.get('date')) and not start.get('dateTime')
        start_ms = self._parse_instant(
            start.get('dateTime') or start.get('date'), start.get('timeZone')
        )
        end_ms = self._parse_instant(
            end.get('dateTime') or end.get('date'), end.get('timeZone')
        )
        if start_ms is None or end_ms is None:
            return None

        description = payload.get('description') or ''
        location = payload.get('location') or ''

        native_video = bool(payload.get('hangoutLink'))
        entry_points = (payload.get('conferenceData') or {}).get('entryPoints') or []
        if any(ep.get('entryPointType') == 'video' for ep in entry_points):
            native_video = True

        return NormalizedEvent(
            start=start_ms,
            end=end_ms,
            title=payload.get('summary') or '',
            description=self._plain_text(description),
            location=location,
            is_all_day=is_all_day,
            has_video_link=self._has_video_link(location, description, native_video)
        )

    def _parse_outlook(self, payload: dict) -> Optional[NormalizedEvent]:
        """Parse a Microsoft Graph event resource."""
        if not isinstance(payload, dict):
            return None
        start = payload.get('start') or {}
        end = payload.get('end') or {}

        start_ms = self._parse_instant(
            start.get('dateTime') or start.get('date'), start.get('timeZone')
        )
        end_ms = self._parse_instant(
            end.get('dateTime') or end.get('date'), end.get('timeZone')
        )
        if start_ms is None or end_ms is None:
            return None

        description = payload.get('bodyPreview') or ''
        if not description:
            description = (payload.get('body') or {}).get('content') or ''
        location = (payload.get('location') or {}).get('displayName') or ''

        native_video = bool(
            payload.get('onlineMeetingUrl') or
            (payload.get('onlineMeeting') or {}).get('joinUrl') or
            payload.get('isOnlineMeeting')
        )

        return NormalizedEvent(
            start=start_ms,
            end=end_ms,
            title=payload.get('subject') or '',
            description=self._plain_text(description),
            location=location,
            is_all_day=bool(payload.get('isAllDay')),
            has_video_link=self._has_video_link(location, description, native_video)
        )

    def _parse_ics(self, payload) -> Optional[NormalizedEvent]:
        """Parse a VEVENT produced by the ics library."""
        begin = getattr(payload, 'begin', None)
        end = getattr(payload, 'end', None)
        if begin is None or end is None:
            return None

        is_all_day = bool(getattr(payload, 'all_day', False))
        if is_all_day:
            start_ms = self._midnight_ms(begin.date())
            end_ms = self._midnight_ms(end.date())
        else:
            start_ms = to_epoch_ms(begin.datetime)
            end_ms = to_epoch_ms(end.datetime)

        description = payload.description or ''
        location = payload.location or ''
        url = getattr(payload, 'url', None) or ''

        return NormalizedEvent(
            start=start_ms,
            end=end_ms,
            title=payload.name or '',
            description=self._plain_text(description),
            location=location,
            is_all_day=is_all_day,
            has_video_link=self._has_video_link(
                location, f"{description} {url}", False
            )
        )

    def _parse_instant(self, value: Optional[str],
                       tz_name: Optional[str] = None) -> Optional[int]:
        """
        Parse an ISO 8601 date or date-time into epoch milliseconds.

        Date-only values are anchored at midnight in the device zone.
        Naive date-times use tz_name, or UTC when it is absent.

        Returns:
            Epoch milliseconds or None if parsing fails
        """
        if not value or not isinstance(value, str):
            return None
        value = value.strip()

        try:
            if len(value) == 10:
                return self._midnight_ms(date.fromisoformat(value))
            parsed = date_parser.isoparse(value)
        except ValueError:
            return None

        if parsed.tzinfo is None:
            zone = resolve_zone(tz_name) if tz_name else timezone.utc
            parsed = parsed.replace(tzinfo=zone)
        return to_epoch_ms(parsed)

    def _midnight_ms(self, day: date) -> int:
        return to_epoch_ms(datetime.combine(day, time.min, tzinfo=self.zone))

    def _has_video_link(self, location: str, description: str,
                        native: bool) -> bool:
        if not self.detect_video_links:
            return False
        if native:
            return True
        return bool(
            VIDEO_LINK_RE.search(location or '') or
            VIDEO_LINK_RE.search(description or '')
        )

    @staticmethod
    def _plain_text(text: str) -> str:
        """Strip HTML markup from provider descriptions."""
        if '<' not in text or '>' not in text:
            return text
        return BeautifulSoup(text, 'html.parser').get_text(' ', strip=True)
