"""Unit tests for CacheReconciler."""
from unittest.mock import Mock

import pytest

from processor.errors import WebhookDeliveryError
from processor.models import CachedEvent
from processor.reconciler import CacheReconciler, select_winner


@pytest.fixture
def store():
    return Mock()


@pytest.fixture
def pusher():
    pusher = Mock()
    pusher.push_status.return_value = True
    return pusher


@pytest.fixture
def scheduler():
    return Mock()


@pytest.fixture
def reconciler(store, pusher, scheduler):
    return CacheReconciler(store, pusher, scheduler)


def _scheduled_times(scheduler):
    return [c.args[1] for c in scheduler.schedule_apply.call_args_list]


class TestSelectWinner:
    """Test cases for picking the authoritative cached event."""

    def test_latest_end_wins(self, at):
        """Test the overlapping event ending last is chosen."""
        cached = [
            CachedEvent(start=at(9), end=at(10), status_key=2),
            CachedEvent(start=at(9, 30), end=at(11), status_key=6),
        ]
        winner = select_winner(cached, at(9, 45))
        assert winner.status_key == 6

    def test_equal_end_prefers_longer_block(self, at):
        """Test a nested shorter event does not interrupt a longer one."""
        cached = [
            CachedEvent(start=at(9), end=at(12), status_key=3),
            CachedEvent(start=at(11), end=at(12), status_key=2),
        ]
        winner = select_winner(cached, at(11, 30))
        assert winner.status_key == 3

    def test_unclassified_events_are_ignored(self, at):
        """Test events without a status key never win."""
        cached = [CachedEvent(start=at(9), end=at(10), status_key=None)]
        assert select_winner(cached, at(9, 30)) is None


class TestCacheReconciler:
    """Test cases for the cache state machine."""

    def test_overlapping_event_becomes_active(
        self, reconciler, store, pusher, scheduler, make_device, at
    ):
        """Test the longest-running overlapping event drives the status."""
        device = make_device(
            active_status_key=5, active_status_label='Heads down',
            preferred_status_key=1, preferred_status_label='Available',
            cached_events=[
                CachedEvent(start=at(9), end=at(10), status_key=2),
                CachedEvent(start=at(9, 30), end=at(11), status_key=6),
                CachedEvent(start=at(13), end=at(14), status_key=2),
            ]
        )

        result = reconciler.apply(device, at(9, 45), 'Google Calendar')

        assert result.changed is True
        assert result.pushed is True
        assert device.active.active_status_key == 6
        assert device.active.active_status_label == 'On a call'
        assert device.active.active_event_ends_at == at(11)
        assert device.active.active_status_source == 'Google Calendar'

        updates = store.update_device.call_args.args[1]
        assert updates['active_status_key'] == 6
        assert updates['active_event_ends_at'] == at(11)
        assert 'calendar_cached_events' not in updates

        pusher.push_status.assert_called_once()
        pushed_status = pusher.push_status.call_args.args[1]
        assert pushed_status.key == 6
        assert _scheduled_times(scheduler) == [at(11), at(13)]

    def test_second_run_does_not_push_again(
        self, reconciler, pusher, make_device, at
    ):
        """Test reconciling twice with the same cache and time pushes once."""
        device = make_device(
            active_status_key=5, active_status_label='Heads down',
            cached_events=[CachedEvent(start=at(9), end=at(10), status_key=2)]
        )

        first = reconciler.apply(device, at(9, 15), 'Calendar')
        second = reconciler.apply(device, at(9, 15), 'Calendar')

        assert first.changed is True
        assert second.changed is False
        assert pusher.push_status.call_count == 1

    def test_matching_status_still_schedules_boundaries(
        self, reconciler, store, pusher, scheduler, make_device, at
    ):
        """Test an unchanged status still asks for re-evaluation."""
        device = make_device(
            active_status_key=2, active_status_label='In a meeting',
            active_event_ends_at=at(10),
            cached_events=[
                CachedEvent(start=at(8), end=at(8, 30), status_key=2),
                CachedEvent(start=at(9), end=at(10), status_key=2),
                CachedEvent(start=at(10, 30), end=at(11), status_key=4),
            ]
        )

        result = reconciler.apply(device, at(9, 15), 'Calendar')

        assert result.changed is False
        pusher.push_status.assert_not_called()
        updates = store.update_device.call_args.args[1]
        assert [e.start for e in updates['calendar_cached_events']] == [at(9), at(10, 30)]
        assert _scheduled_times(scheduler) == [at(10), at(10, 30)]

    def test_back_to_back_event_start_is_scheduled(
        self, reconciler, scheduler, make_device, at
    ):
        """Test the next event after the winner's end is scheduled."""
        device = make_device(
            active_status_key=5, active_status_label='Heads down',
            cached_events=[
                CachedEvent(start=at(9), end=at(10), status_key=2),
                CachedEvent(start=at(9, 30), end=at(9, 45), status_key=6),
                CachedEvent(start=at(10, 15), end=at(11), status_key=4),
            ]
        )

        reconciler.apply(device, at(9, 10), 'Calendar')

        assert _scheduled_times(scheduler) == [at(10), at(10, 15)]

    def test_gap_between_events_uses_idle_status(
        self, reconciler, pusher, scheduler, make_device, at
    ):
        """Test a gap resolves to the idle status and waits for the next event."""
        device = make_device(
            active_status_key=2, active_status_label='In a meeting',
            active_event_ends_at=at(10),
            cached_events=[
                CachedEvent(start=at(9), end=at(10), status_key=2),
                CachedEvent(start=at(11), end=at(12), status_key=2),
            ]
        )

        result = reconciler.apply(device, at(10, 30), 'Calendar')

        assert result.changed is True
        assert device.active.active_status_key == 5
        assert device.active.active_event_ends_at is None
        assert pusher.push_status.call_args.args[1].key == 5
        assert _scheduled_times(scheduler) == [at(11)]

    def test_gap_with_idle_already_active_does_not_push(
        self, reconciler, store, pusher, make_device, at
    ):
        """Test no push when the fallback equals the stored status."""
        device = make_device(
            active_status_key=5, active_status_label='Heads down',
            cached_events=[CachedEvent(start=at(11), end=at(12), status_key=2)]
        )

        result = reconciler.apply(device, at(10, 30), 'Calendar')

        assert result.changed is False
        pusher.push_status.assert_not_called()
        store.update_device.assert_not_called()

    def test_idle_use_preferred_overrides_idle_status(
        self, reconciler, pusher, make_device, at
    ):
        """Test the preferred status is used when idle_use_preferred is set."""
        device = make_device(
            active_status_key=2, active_status_label='In a meeting',
            active_event_ends_at=at(10),
            preferred_status_key=1, preferred_status_label='Available',
            cached_events=[CachedEvent(start=at(11), end=at(12), status_key=2)]
        )
        device.rules.idle_use_preferred = True

        reconciler.apply(device, at(10, 30), 'Calendar')

        assert device.active.active_status_key == 1
        assert pusher.push_status.call_args.args[1].label == 'Available'

    def test_expired_cache_falls_back_after_fence(
        self, reconciler, store, pusher, make_device, at
    ):
        """Test an emptied cache reverts to the fallback once the fence passed."""
        device = make_device(
            active_status_key=2, active_status_label='In a meeting',
            active_event_ends_at=at(10),
            cached_events=[CachedEvent(start=at(9), end=at(10), status_key=2)]
        )

        result = reconciler.apply(device, at(10, 30), 'Calendar')

        assert result.changed is True
        updates = store.update_device.call_args.args[1]
        assert updates['calendar_cached_events'] == []
        assert updates['active_event_ends_at'] is None
        assert updates['active_status_key'] == 5
        assert device.cached_events == []
        pusher.push_status.assert_called_once()

    def test_empty_cache_without_fence_is_a_no_op(
        self, reconciler, store, pusher, scheduler, make_device, at
    ):
        """Test nothing is written when there is nothing to do."""
        device = make_device(active_status_key=1, active_status_label='Available')

        result = reconciler.apply(device, at(10), 'Calendar')

        assert result.changed is False
        store.update_device.assert_not_called()
        pusher.push_status.assert_not_called()
        scheduler.schedule_apply.assert_not_called()

    def test_push_failure_keeps_persisted_state(
        self, reconciler, store, pusher, make_device, at
    ):
        """Test a failed push is reported but state is still committed."""
        pusher.push_status.side_effect = WebhookDeliveryError(3, status_code=503)
        device = make_device(
            active_status_key=5, active_status_label='Heads down',
            cached_events=[CachedEvent(start=at(9), end=at(10), status_key=2)]
        )

        result = reconciler.apply(device, at(9, 30), 'Calendar')

        assert result.changed is True
        assert result.pushed is False
        assert '503' in result.push_error
        assert store.update_device.call_args.args[1]['active_status_key'] == 2

    def test_unknown_status_key_is_a_no_op(
        self, reconciler, pusher, make_device, at
    ):
        """Test a cached key missing from the status table changes nothing."""
        device = make_device(
            active_status_key=1, active_status_label='Available',
            cached_events=[CachedEvent(start=at(9), end=at(10), status_key=9)]
        )

        result = reconciler.apply(device, at(9, 30), 'Calendar')

        assert result.changed is False
        assert device.active.active_status_key == 1
        pusher.push_status.assert_not_called()

    def test_replaced_manual_status_is_remembered(
        self, reconciler, store, make_device, at
    ):
        """Test a manual status replaced by an event becomes the preferred one."""
        device = make_device(
            active_status_key=1, active_status_label='Available',
            cached_events=[CachedEvent(start=at(9), end=at(10), status_key=2)]
        )

        reconciler.apply(device, at(9, 30), 'Calendar')

        updates = store.update_device.call_args.args[1]
        assert updates['preferred_status_key'] == 1
        assert updates['preferred_status_label'] == 'Available'

    def test_extended_event_moves_fence_without_push(
        self, reconciler, store, pusher, make_device, at
    ):
        """Test a longer overlapping event with the same status only moves the fence."""
        device = make_device(
            active_status_key=2, active_status_label='In a meeting',
            active_event_ends_at=at(10),
            cached_events=[
                CachedEvent(start=at(9), end=at(10), status_key=2),
                CachedEvent(start=at(9, 30), end=at(11), status_key=2),
            ]
        )

        reconciler.apply(device, at(9, 45), 'Calendar')

        pusher.push_status.assert_not_called()
        assert store.update_device.call_args.args[1] == {'active_event_ends_at': at(11)}
