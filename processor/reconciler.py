"""Re-evaluates a device's same-day cache against the current time.

Each pass reads only the persisted cache and active status, so running it
early, late or twice for the same instant converges to the same state and
never pushes twice. A push happens only when the resolved (key, label)
pair differs from the stored one.
"""
import logging
from typing import Any, Dict, List, Optional

from processor.classifier import classifier_for, resolve_status
from processor.errors import WebhookError
from processor.models import (
    ActiveStatus,
    ApplyResult,
    CachedEvent,
    DeviceRecord,
    ResolvedStatus,
)

logger = logging.getLogger(__name__)


def select_winner(cached: List[CachedEvent], now: int) -> Optional[CachedEvent]:
    """
    The cached event that drives the status at now.

    Among classified events overlapping now, the one ending last wins;
    on equal ends the one that started first (the longer block) wins.
    Events no rule classified (null status_key) are left out before the
    latest-end rule runs, so a longer unclassified event never masks a
    classified one.
    """
    overlapping = [
        e for e in cached
        if e.start <= now <= e.end and e.status_key is not None
    ]
    if not overlapping:
        return None
    return max(overlapping, key=lambda e: (e.end, -e.start))


def status_differs(active: ActiveStatus, status: ResolvedStatus) -> bool:
    return (
        active.active_status_key != status.key or
        active.active_status_label != status.label
    )


class CacheReconciler:
    """Applies the same-day cache to a device and pushes status changes."""

    def __init__(self, store, pusher, scheduler):
        """
        Initialize the reconciler.

        Args:
            store: DeviceStore used for partial updates
            pusher: WebhookPusher delivering status changes
            scheduler: Anything with schedule_apply(device_id, run_at_ms)
        """
        self.store = store
        self.pusher = pusher
        self.scheduler = scheduler

    def apply(self, device: DeviceRecord, now: int, source: str) -> ApplyResult:
        """
        Reconcile one device at instant now.

        Persisted state is committed before the push, and push failures
        are logged rather than raised, so one bad webhook never blocks
        the state machine or other devices.

        Args:
            device: Device as read from the store (updated in place)
            now: Evaluation instant in epoch milliseconds
            source: Label recorded as the status source

        Returns:
            ApplyResult describing what changed
        """
        result = ApplyResult(device_id=device.device_id)
        active = device.active
        previous = device.cached_events
        cached = sorted(
            (e for e in previous if e.end > now), key=lambda e: e.start
        )

        updates: Dict[str, Any] = {}
        if len(cached) != len(previous):
            updates['calendar_cached_events'] = cached

        fence = active.active_event_ends_at
        target = None

        if not cached:
            if fence is not None and fence <= now:
                fallback = self._fallback(device)
                if fallback and status_differs(active, fallback):
                    target = fallback
                updates['active_event_ends_at'] = None
            self._commit(device, updates, target, source, now, result)
            return result

        winner = select_winner(cached, now)

        if winner is None:
            fallback = self._fallback(device)
            if fallback and status_differs(active, fallback):
                target = fallback
            if fence is not None:
                updates['active_event_ends_at'] = None
            self._commit(device, updates, target, source, now, result)

            upcoming = next((e for e in cached if e.start > now), None)
            if upcoming:
                self._schedule(device, upcoming.start, result)
            return result

        status = resolve_status(device, winner.status_key)
        if status is not None and status_differs(active, status):
            target = status
            updates['active_event_ends_at'] = winner.end
            self._commit(device, updates, target, source, now, result,
                         remember_replaced=fence is None)

            self._schedule(device, winner.end, result)
            following = next(
                (e for e in cached if e.start > now and e.start > winner.end),
                None
            )
            if following:
                self._schedule(device, following.start, result)
            return result

        if status is not None and fence != winner.end:
            updates['active_event_ends_at'] = winner.end
        self._commit(device, updates, None, source, now, result)

        self._schedule(device, winner.end, result)
        upcoming = next((e for e in cached if e.start > now), None)
        if upcoming:
            self._schedule(device, upcoming.start, result)
        return result

    def _fallback(self, device: DeviceRecord) -> Optional[ResolvedStatus]:
        return resolve_status(device, classifier_for(device).fallback_key())

    def _commit(self, device: DeviceRecord, updates: Dict[str, Any],
                target: Optional[ResolvedStatus], source: str, now: int,
                result: ApplyResult, remember_replaced: bool = False) -> None:
        """Persist updates and, when the status changed, push it."""
        active = device.active

        if target is not None:
            updates.update({
                'active_status_key': target.key,
                'active_status_label': target.label,
                'active_status_source': source,
                'updated_at': now,
            })
            if (remember_replaced and not active.preferred_status_key
                    and active.active_status_key):
                # Remember the manual status an event is replacing
                updates['preferred_status_key'] = active.active_status_key
                updates['preferred_status_label'] = active.active_status_label

        if updates:
            self.store.update_device(device.device_id, updates)
            for attribute, value in updates.items():
                if attribute == 'calendar_cached_events':
                    device.cached_events = value
                else:
                    setattr(active, attribute, value)

        if target is None:
            return

        result.changed = True
        logger.info(
            f"Device {device.device_id} status -> {target.key} ({target.label})",
            extra={'device_id': device.device_id}
        )
        try:
            result.pushed = self.pusher.push_status(device, target, source, now)
        except WebhookError as e:
            result.push_error = str(e)
            logger.error(
                f"Webhook push failed for device {device.device_id}: {e}",
                extra={'device_id': device.device_id,
                       'error_type': type(e).__name__}
            )

    def _schedule(self, device: DeviceRecord, run_at: int,
                  result: ApplyResult) -> None:
        if run_at in result.scheduled:
            return
        result.scheduled.append(run_at)
        self.scheduler.schedule_apply(device.device_id, run_at)
