"""Sync passes: provider events in, reconciled device status out."""
import logging
from typing import Iterable, Optional

from processor.cache_builder import build_same_day_cache
from processor.classifier import classifier_for
from processor.errors import (
    DeviceNotFoundError,
    NoCalendarConfiguredError,
    ProviderFetchError,
)
from processor.models import ApplyResult, BatchResult, DeviceRecord, ProviderEvent
from processor.normalizer import EventNormalizer, epoch_ms_now

logger = logging.getLogger(__name__)

SOURCE_GOOGLE = 'Google Calendar'
SOURCE_OUTLOOK = 'Outlook Calendar'
SOURCE_DEFAULT = 'Calendar'


def resolve_source(device: DeviceRecord) -> str:
    """Status source label for calendar-driven changes on a device."""
    if device.calendar_ids:
        return SOURCE_GOOGLE
    if device.outlook_calendar_ids:
        return SOURCE_OUTLOOK
    if device.calendar_ics_url:
        return SOURCE_DEFAULT
    return device.active.active_status_source or SOURCE_DEFAULT


class SyncService:
    """Builds fresh caches from provider events and reconciles devices."""

    def __init__(self, store, reconciler, ics_client=None, clock=epoch_ms_now):
        """
        Initialize the service.

        Args:
            store: DeviceStore
            reconciler: CacheReconciler
            ics_client: IcsFeedClient used by ICS syncs
            clock: Returns the current time in epoch milliseconds
        """
        self.store = store
        self.reconciler = reconciler
        self.ics_client = ics_client
        self.clock = clock

    def load_device(self, device_id: str) -> DeviceRecord:
        device = self.store.get_device(device_id)
        if device is None:
            raise DeviceNotFoundError(device_id)
        return device

    def sync_device(self, device: DeviceRecord,
                    provider_events: Iterable[ProviderEvent],
                    now: Optional[int] = None,
                    source: Optional[str] = None) -> ApplyResult:
        """
        Replace a device's cache with today's events and reconcile it.

        Args:
            device: Device to sync
            provider_events: Records already fetched by a provider adapter
            now: Evaluation instant (default: current time)
            source: Status source label (default: derived from the device)

        Returns:
            ApplyResult of the reconciliation
        """
        now = self.clock() if now is None else now
        normalizer = EventNormalizer(
            device.display.timezone, device.rules.detect_video_links
        )
        events = normalizer.normalize_events(provider_events)
        cache = build_same_day_cache(
            events, now, classifier_for(device), device.display.timezone
        )

        self.store.update_device(device.device_id, {'calendar_cached_events': cache})
        device.cached_events = cache
        logger.info(
            f"Cached {len(cache)} events for device {device.device_id}",
            extra={'device_id': device.device_id}
        )

        return self.reconciler.apply(device, now, source or resolve_source(device))

    def sync_events(self, device_id: str,
                    provider_events: Iterable[ProviderEvent],
                    now: Optional[int] = None) -> ApplyResult:
        """Sync a device by id with events handed in by an adapter."""
        return self.sync_device(self.load_device(device_id), provider_events, now)

    def sync_ics_device(self, device: DeviceRecord,
                        now: Optional[int] = None) -> ApplyResult:
        """
        Fetch a device's ICS feed and sync it.

        Raises:
            NoCalendarConfiguredError: If the device has no feed URL
            ProviderFetchError: If the feed cannot be fetched; cache is untouched
        """
        if not device.calendar_ics_url:
            raise NoCalendarConfiguredError(device.device_id)
        provider_events = self.ics_client.fetch_events(device.calendar_ics_url)
        return self.sync_device(device, provider_events, now, SOURCE_DEFAULT)

    def manual_ics_sync(self, device_id: str,
                        now: Optional[int] = None) -> ApplyResult:
        """ICS sync triggered by a person. Errors go back to the caller."""
        return self.sync_ics_device(self.load_device(device_id), now)

    def sync_ics_feeds(self, now: Optional[int] = None) -> BatchResult:
        """
        Sync every device that relies on an ICS feed.

        Devices with Google or Outlook calendars selected are skipped. A
        failing device is logged and does not stop the batch.
        """
        now = self.clock() if now is None else now
        batch = BatchResult()

        for device in self.store.scan_devices():
            if not device.calendar_ics_url or device.calendar_ids or device.outlook_calendar_ids:
                batch.skipped += 1
                continue

            try:
                result = self.sync_ics_device(device, now)
            except ProviderFetchError as e:
                logger.warning(
                    f"Skipping ICS sync for device {device.device_id}: {e}",
                    extra={'device_id': device.device_id}
                )
                batch.errors.append(f"{device.device_id}: {e}")
                continue
            except Exception as e:
                logger.error(
                    f"ICS sync failed for device {device.device_id}: {e}",
                    extra={'device_id': device.device_id,
                           'error_type': type(e).__name__},
                    exc_info=True
                )
                batch.errors.append(f"{device.device_id}: {e}")
                continue

            batch.processed += 1
            if result.changed:
                batch.changed += 1

        logger.info(
            f"ICS sync complete: {batch.processed} processed, "
            f"{batch.changed} changed, {len(batch.errors)} errors"
        )
        return batch

    def apply_device(self, device_id: str,
                     now: Optional[int] = None) -> ApplyResult:
        """Reconcile one device from its persisted cache, no fetch."""
        now = self.clock() if now is None else now
        device = self.load_device(device_id)
        return self.reconciler.apply(device, now, resolve_source(device))

    def apply_all(self, now: Optional[int] = None) -> BatchResult:
        """
        Reconcile every device with cached events or an elapsed event fence.

        A failing device is logged and does not stop the batch.
        """
        now = self.clock() if now is None else now
        batch = BatchResult()

        for device in self.store.scan_devices():
            fence = device.active.active_event_ends_at
            if not device.cached_events and not (fence is not None and fence <= now):
                batch.skipped += 1
                continue

            try:
                result = self.reconciler.apply(device, now, resolve_source(device))
            except Exception as e:
                logger.error(
                    f"Cache apply failed for device {device.device_id}: {e}",
                    extra={'device_id': device.device_id,
                           'error_type': type(e).__name__},
                    exc_info=True
                )
                batch.errors.append(f"{device.device_id}: {e}")
                continue

            batch.processed += 1
            if result.changed:
                batch.changed += 1

        logger.info(
            f"Cache apply complete: {batch.processed} processed, "
            f"{batch.changed} changed, {len(batch.errors)} errors"
        )
        return batch
