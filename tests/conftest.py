"""Shared fixtures for status sync tests."""
from datetime import datetime, timezone

import pytest

from processor.models import (
    ClassificationRules,
    DeviceRecord,
    StatusDefinition,
)


@pytest.fixture
def at():
    """Epoch milliseconds for a wall-clock time on 2024-03-15 UTC."""
    def _at(hour: int, minute: int = 0, day: int = 15) -> int:
        moment = datetime(2024, 3, day, hour, minute, tzinfo=timezone.utc)
        return int(moment.timestamp() * 1000)
    return _at


@pytest.fixture
def statuses():
    return [
        StatusDefinition(key=1, label='Available'),
        StatusDefinition(key=2, label='In a meeting'),
        StatusDefinition(key=3, label='Out of office'),
        StatusDefinition(key=4, label='Interviewing'),
        StatusDefinition(key=5, label='Heads down'),
        StatusDefinition(key=6, label='On a call'),
    ]


@pytest.fixture
def make_device(statuses):
    """Factory for a device with a typical rule set."""
    def _make_device(**overrides) -> DeviceRecord:
        rules = overrides.pop('rules', None) or ClassificationRules(
            keywords=['interview'],
            keyword_status_key=4,
            video_status_key=6,
            ooo_status_key=3,
            meeting_status_key=2,
            idle_status_key=5,
            detect_video_links=True,
        )
        device = DeviceRecord(
            device_id=overrides.pop('device_id', 'device-1'),
            user_id='user-1',
            webhook_url=overrides.pop('webhook_url', 'https://hooks.example.com/device-1'),
            statuses=list(statuses),
            rules=rules,
        )
        for attribute, value in overrides.items():
            if hasattr(device.active, attribute):
                setattr(device.active, attribute, value)
            else:
                setattr(device, attribute, value)
        return device
    return _make_device
