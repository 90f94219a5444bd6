"""Same-day cache of classified events."""
import logging
from datetime import datetime, time
from typing import Iterable, List, Tuple

from processor.classifier import StatusClassifier
from processor.models import CachedEvent, NormalizedEvent
from processor.normalizer import resolve_zone, to_epoch_ms

logger = logging.getLogger(__name__)

MAX_CACHED_EVENTS = 10

_END_OF_DAY = time(23, 59, 59, 999000)


def local_day_bounds(now: int, timezone_name: str) -> Tuple[int, int]:
    """
    First and last millisecond of the local calendar day containing now.

    Args:
        now: Evaluation instant in epoch milliseconds
        timezone_name: IANA zone the day boundaries are taken in

    Returns:
        Tuple of (start_of_day, end_of_day) in epoch milliseconds
    """
    zone = resolve_zone(timezone_name)
    local_date = datetime.fromtimestamp(now / 1000, tz=zone).date()
    start = datetime.combine(local_date, time.min, tzinfo=zone)
    end = datetime.combine(local_date, _END_OF_DAY, tzinfo=zone)
    return to_epoch_ms(start), to_epoch_ms(end)


def build_same_day_cache(
    events: Iterable[NormalizedEvent],
    now: int,
    classifier: StatusClassifier,
    timezone_name: str = 'UTC'
) -> List[CachedEvent]:
    """
    Project normalized events into today's cache.

    Keeps events intersecting today that have not ended yet, classifies
    each one on its own, sorts by start and keeps the first ten.
    """
    day_start, day_end = local_day_bounds(now, timezone_name)

    todays = [
        event for event in events
        if event.end >= day_start and event.start <= day_end and event.end >= now
    ]
    todays.sort(key=lambda event: event.start)

    cache = [
        CachedEvent(
            start=event.start,
            end=event.end,
            status_key=classifier.classify(event)
        )
        for event in todays[:MAX_CACHED_EVENTS]
    ]

    if len(todays) > MAX_CACHED_EVENTS:
        logger.info(
            f"Truncated same-day cache from {len(todays)} to {MAX_CACHED_EVENTS} events"
        )
    return cache
