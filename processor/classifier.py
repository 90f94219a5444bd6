"""Status classification for calendar events.

Rules are an ordered list of (name, status key, predicate) entries. The
first rule whose predicate accepts an event decides its status, so the
list order is the priority order:

    keyword > video link > all-day (out of office) > timed meeting

Fallback when nothing matches: preferred status (if idle_use_preferred),
then the idle status, then the preferred status as a last resort.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, TypeVar

from processor.models import (
    ClassificationRules,
    DeviceRecord,
    NormalizedEvent,
    ResolvedStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


def first_match(items: Iterable[T], fn: Callable[[T], Optional[R]]) -> Optional[R]:
    """Return the first non-None result of fn over items."""
    for item in items:
        result = fn(item)
        if result is not None:
            return result
    return None


@dataclass(frozen=True)
class StatusRule:
    """One entry of the priority list."""
    name: str
    status_key: int
    predicate: Callable[[NormalizedEvent], bool]

    def apply(self, event: NormalizedEvent) -> Optional[int]:
        return self.status_key if self.predicate(event) else None


def build_rules(rules: ClassificationRules) -> List[StatusRule]:
    """
    Compile a device's classification settings into the ordered rule list.

    Rules without a configured status key are left out entirely.
    """
    ordered = []

    keywords = [k.strip().lower() for k in rules.keywords if k and k.strip()]
    if keywords and rules.keyword_status_key:
        def matches_keyword(event: NormalizedEvent) -> bool:
            haystack = f"{event.title} {event.description}".lower()
            return any(k in haystack for k in keywords)

        ordered.append(
            StatusRule('keyword', rules.keyword_status_key, matches_keyword)
        )

    if rules.detect_video_links and rules.video_status_key:
        ordered.append(
            StatusRule('video', rules.video_status_key,
                       lambda event: event.has_video_link)
        )

    if rules.ooo_status_key:
        ordered.append(
            StatusRule('all_day', rules.ooo_status_key,
                       lambda event: event.is_all_day)
        )

    if rules.meeting_status_key:
        ordered.append(
            StatusRule('meeting', rules.meeting_status_key,
                       lambda event: not event.is_all_day)
        )

    return ordered


class StatusClassifier:
    """Applies a device's ordered rules to events."""

    def __init__(self, rules: ClassificationRules,
                 preferred_status_key: Optional[int] = None):
        self.rules = rules
        self.preferred_status_key = preferred_status_key
        self.ordered_rules = build_rules(rules)

    def classify(self, event: NormalizedEvent) -> Optional[int]:
        """Status key for a single event, or None when no rule matches."""
        return first_match(self.ordered_rules, lambda rule: rule.apply(event))

    def select_active(self, events: Iterable[NormalizedEvent],
                      now: int) -> Optional[int]:
        """
        Status key for the set of events overlapping now.

        Overlapping events are considered in chronological order and the
        first one that matches any rule decides. Falls back when none do.
        """
        overlapping = sorted(
            (e for e in events if e.start <= now <= e.end),
            key=lambda e: e.start
        )
        key = first_match(overlapping, self.classify)
        if key is None:
            key = self.fallback_key()
        return key

    def fallback_key(self) -> Optional[int]:
        """Idle-time status key, or None to leave the status unchanged."""
        preferred = self.preferred_status_key
        if self.rules.idle_use_preferred and preferred:
            return preferred
        if self.rules.idle_status_key:
            return self.rules.idle_status_key
        return preferred or None


def classifier_for(device: DeviceRecord) -> StatusClassifier:
    return StatusClassifier(device.rules, device.active.preferred_status_key)


def resolve_status(device: DeviceRecord,
                   key: Optional[int]) -> Optional[ResolvedStatus]:
    """
    Pair a status key with its display label.

    The label comes from the device's status table, or from the stored
    preferred label when the key is the preferred one. A key found in
    neither is a configuration inconsistency and resolves to None.
    """
    if not key:
        return None
    for status in device.statuses:
        if status.key == key:
            return ResolvedStatus(key=key, label=status.label)
    if key == device.active.preferred_status_key:
        return ResolvedStatus(key=key, label=device.active.preferred_status_label)

    logger.warning(
        f"Status key {key} is not defined on device {device.device_id}"
    )
    return None
