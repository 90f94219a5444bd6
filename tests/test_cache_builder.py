"""Unit tests for the same-day cache builder."""
from datetime import datetime
from zoneinfo import ZoneInfo

from processor.cache_builder import (
    MAX_CACHED_EVENTS,
    build_same_day_cache,
    local_day_bounds,
)
from processor.classifier import StatusClassifier
from processor.models import ClassificationRules, NormalizedEvent


def _event(start, end, title='Meeting', is_all_day=False):
    return NormalizedEvent(
        start=start, end=end, title=title, description='', location=None,
        is_all_day=is_all_day, has_video_link=False
    )


def _classifier():
    return StatusClassifier(ClassificationRules(
        keywords=['interview'], keyword_status_key=4,
        ooo_status_key=3, meeting_status_key=2,
    ))


class TestLocalDayBounds:
    """Test cases for local day boundaries."""

    def test_utc_day(self, at):
        start, end = local_day_bounds(at(15, 30), 'UTC')
        assert start == at(0)
        assert end == at(0, day=16) - 1

    def test_new_york_day(self):
        zone = ZoneInfo('America/New_York')
        now = int(datetime(2024, 3, 15, 22, 0, tzinfo=zone).timestamp() * 1000)
        start, end = local_day_bounds(now, 'America/New_York')
        assert start == int(datetime(2024, 3, 15, tzinfo=zone).timestamp() * 1000)
        assert end == int(datetime(2024, 3, 16, tzinfo=zone).timestamp() * 1000) - 1


class TestBuildSameDayCache:
    """Test cases for build_same_day_cache."""

    def test_tomorrow_is_excluded(self, at):
        """Test an event starting tomorrow stays out of today's cache."""
        events = [
            _event(at(14), at(15)),
            _event(at(9, day=16), at(10, day=16)),
        ]
        cache = build_same_day_cache(events, at(8), _classifier())
        assert [e.start for e in cache] == [at(14)]

    def test_ended_events_are_dropped(self, at):
        events = [_event(at(8), at(9)), _event(at(9, 30), at(11))]
        cache = build_same_day_cache(events, at(10), _classifier())
        assert [e.start for e in cache] == [at(9, 30)]

    def test_event_started_yesterday_is_kept(self, at):
        """Test an event spanning midnight into today is cached."""
        events = [_event(at(0, day=14), at(0, day=17), is_all_day=True)]
        cache = build_same_day_cache(events, at(10), _classifier())
        assert len(cache) == 1
        assert cache[0].status_key == 3

    def test_sorted_classified_and_capped(self, at):
        """Test entries are sorted, classified and capped at ten."""
        events = [
            _event(at(23 - i), at(23 - i, 30), title=f'Event {i}')
            for i in range(12)
        ]
        events.append(_event(at(9), at(9, 45), title='Interview with Sam'))

        cache = build_same_day_cache(events, at(8), _classifier())

        assert len(cache) == MAX_CACHED_EVENTS
        starts = [e.start for e in cache]
        assert starts == sorted(starts)
        assert cache[0].start == at(9)
        assert cache[0].status_key == 4
        assert cache[1].status_key == 2

    def test_local_day_in_device_timezone(self):
        """Test the day boundary follows the device zone, not UTC."""
        zone = ZoneInfo('America/Los_Angeles')

        def ms(day, hour):
            return int(datetime(2024, 3, day, hour, tzinfo=zone).timestamp() * 1000)

        events = [
            _event(ms(15, 20), ms(15, 21)),
            _event(ms(16, 1), ms(16, 2)),
        ]
        cache = build_same_day_cache(events, ms(15, 18), _classifier(), 'America/Los_Angeles')
        assert [e.start for e in cache] == [ms(15, 20)]

    def test_unclassified_event_has_null_key(self, at):
        classifier = StatusClassifier(ClassificationRules())
        cache = build_same_day_cache([_event(at(14), at(15))], at(8), classifier)
        assert cache[0].status_key is None
