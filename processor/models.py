"""Data models for calendar status resolution."""
from dataclasses import dataclass, field
from typing import Any, List, Optional


MIN_STATUS_KEY = 1
MAX_STATUS_KEY = 12


@dataclass
class ProviderEvent:
    """Raw event record tagged with the provider that produced it."""
    provider: str  # 'google' | 'outlook' | 'ics'
    payload: Any


@dataclass
class NormalizedEvent:
    """Provider-independent event. Times are epoch milliseconds."""
    start: int
    end: int
    title: str
    description: str
    location: Optional[str]
    is_all_day: bool
    has_video_link: bool = False


@dataclass
class StatusDefinition:
    """User-editable status label addressed by a stable key."""
    key: int
    label: str
    enabled: bool = True


@dataclass
class ClassificationRules:
    """Per-device mapping from event signals to status keys."""
    keywords: List[str] = field(default_factory=list)
    keyword_status_key: Optional[int] = None
    video_status_key: Optional[int] = None
    ooo_status_key: Optional[int] = None
    meeting_status_key: Optional[int] = None
    idle_status_key: Optional[int] = None
    idle_use_preferred: bool = False
    detect_video_links: bool = False


@dataclass
class CachedEvent:
    """Already classified projection of a NormalizedEvent for today."""
    start: int
    end: int
    status_key: Optional[int]


@dataclass
class ActiveStatus:
    """Status currently shown on the device."""
    active_status_key: Optional[int] = None
    active_status_label: Optional[str] = None
    active_status_source: Optional[str] = None
    active_event_ends_at: Optional[int] = None
    preferred_status_key: Optional[int] = None
    preferred_status_label: Optional[str] = None
    updated_at: Optional[int] = None


@dataclass
class DisplaySettings:
    """How the device renders the pushed status."""
    timezone: str = 'UTC'
    date_format: str = 'MDY'
    time_format: str = '24h'
    show_last_updated: bool = True
    show_status_source: bool = False


@dataclass
class DeviceRecord:
    """Device configuration and state as persisted in the store."""
    device_id: str
    user_id: Optional[str] = None
    webhook_url: Optional[str] = None
    statuses: List[StatusDefinition] = field(default_factory=list)
    rules: ClassificationRules = field(default_factory=ClassificationRules)
    display: DisplaySettings = field(default_factory=DisplaySettings)
    active: ActiveStatus = field(default_factory=ActiveStatus)
    cached_events: List[CachedEvent] = field(default_factory=list)
    calendar_ids: List[str] = field(default_factory=list)
    outlook_calendar_ids: List[str] = field(default_factory=list)
    calendar_ics_url: Optional[str] = None


@dataclass
class ResolvedStatus:
    """A status key paired with the label that will be displayed."""
    key: int
    label: Optional[str]


@dataclass
class ApplyResult:
    """Outcome of one reconciliation pass for a device."""
    device_id: str
    changed: bool = False
    pushed: bool = False
    push_error: Optional[str] = None
    scheduled: List[int] = field(default_factory=list)


@dataclass
class BatchResult:
    """Outcome of a batch pass over many devices."""
    processed: int = 0
    changed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
