"""DynamoDB storage for device configuration and status state."""
import logging
from dataclasses import asdict, is_dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.errors import DeviceNotFoundError
from processor.models import (
    ActiveStatus,
    CachedEvent,
    ClassificationRules,
    DeviceRecord,
    DisplaySettings,
    StatusDefinition,
)

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    return bool(value)


def _to_dynamo(value: Any) -> Any:
    """Convert dataclasses and floats into types boto3 can serialize."""
    if is_dataclass(value):
        return _to_dynamo(asdict(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(v) for v in value]
    if isinstance(value, float):
        return Decimal(str(value))
    return value


class DeviceStore:
    """Reads and partially updates device records keyed by device_id."""

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DeviceStore for table: {table_name}")

    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        """
        Fetch one device.

        Returns:
            DeviceRecord or None if the device does not exist
        """
        try:
            response = self.table.get_item(Key={'device_id': device_id})
        except ClientError as e:
            logger.error(f"Error reading device {device_id}: {e}")
            raise

        item = response.get('Item')
        if not item:
            return None
        return self._item_to_device(item)

    def scan_devices(self) -> List[DeviceRecord]:
        """
        Retrieve all devices using a paginated Scan.

        Returns:
            List of DeviceRecord objects
        """
        logger.info("Scanning DynamoDB table for devices")

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

        devices = []
        for item in items:
            device = self._item_to_device(item)
            if device:
                devices.append(device)

        logger.info(f"Retrieved {len(devices)} devices from DynamoDB")
        return devices

    def put_device(self, device: DeviceRecord) -> None:
        """Write a full device record, replacing any existing one."""
        self.table.put_item(Item=self._device_to_item(device))

    def update_device(self, device_id: str, fields: Dict[str, Any]) -> None:
        """
        Apply a partial update to an existing device.

        Only the given attributes are written, so concurrent writers of
        other attributes are not clobbered and re-applying is harmless.

        Args:
            device_id: Device to update
            fields: Attribute name to new value

        Raises:
            DeviceNotFoundError: If the device does not exist
        """
        if not fields:
            return

        names = {}
        values = {}
        assignments = []
        for index, (attribute, value) in enumerate(fields.items()):
            names[f'#f{index}'] = attribute
            values[f':v{index}'] = _to_dynamo(value)
            assignments.append(f'#f{index} = :v{index}')

        try:
            self.table.update_item(
                Key={'device_id': device_id},
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression='attribute_exists(device_id)',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                raise DeviceNotFoundError(device_id) from e
            logger.error(f"Error updating device {device_id}: {e}")
            raise

        logger.debug(
            f"Updated device {device_id}: {', '.join(fields.keys())}"
        )

    def _item_to_device(self, item: dict) -> Optional[DeviceRecord]:
        """
        Convert a DynamoDB item to a DeviceRecord.

        Returns:
            DeviceRecord or None if the item is malformed
        """
        try:
            statuses = [
                StatusDefinition(
                    key=int(s['key']),
                    label=s.get('label') or '',
                    enabled=_to_bool(s.get('enabled'), True)
                )
                for s in item.get('statuses') or []
            ]
            cached_events = [
                CachedEvent(
                    start=int(e['start']),
                    end=int(e['end']),
                    status_key=_to_int(e.get('status_key'))
                )
                for e in item.get('calendar_cached_events') or []
            ]
            rules = ClassificationRules(
                keywords=list(item.get('calendar_keywords') or []),
                keyword_status_key=_to_int(item.get('calendar_keyword_status_key')),
                video_status_key=_to_int(item.get('calendar_video_status_key')),
                ooo_status_key=_to_int(item.get('calendar_ooo_status_key')),
                meeting_status_key=_to_int(item.get('calendar_meeting_status_key')),
                idle_status_key=_to_int(item.get('calendar_idle_status_key')),
                idle_use_preferred=_to_bool(item.get('calendar_idle_use_preferred'), False),
                detect_video_links=_to_bool(item.get('calendar_detect_video_links'), False),
            )
            display = DisplaySettings(
                timezone=item.get('timezone') or 'UTC',
                date_format=item.get('date_format') or 'MDY',
                time_format=item.get('time_format') or '24h',
                show_last_updated=_to_bool(item.get('show_last_updated'), True),
                show_status_source=_to_bool(item.get('show_status_source'), False),
            )
            active = ActiveStatus(
                active_status_key=_to_int(item.get('active_status_key')),
                active_status_label=item.get('active_status_label'),
                active_status_source=item.get('active_status_source'),
                active_event_ends_at=_to_int(item.get('active_event_ends_at')),
                preferred_status_key=_to_int(item.get('preferred_status_key')),
                preferred_status_label=item.get('preferred_status_label'),
                updated_at=_to_int(item.get('updated_at')),
            )
            return DeviceRecord(
                device_id=item['device_id'],
                user_id=item.get('user_id'),
                webhook_url=item.get('webhook_url'),
                statuses=statuses,
                rules=rules,
                display=display,
                active=active,
                cached_events=cached_events,
                calendar_ids=list(item.get('calendar_ids') or []),
                outlook_calendar_ids=list(item.get('outlook_calendar_ids') or []),
                calendar_ics_url=item.get('calendar_ics_url'),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to convert item to DeviceRecord: {e}")
            return None

    def _device_to_item(self, device: DeviceRecord) -> dict:
        """Convert a DeviceRecord to a DynamoDB item."""
        rules = device.rules
        display = device.display
        active = device.active

        item = {
            'device_id': device.device_id,
            'user_id': device.user_id,
            'webhook_url': device.webhook_url,
            'statuses': [asdict(s) for s in device.statuses],
            'calendar_keywords': list(rules.keywords),
            'calendar_keyword_status_key': rules.keyword_status_key,
            'calendar_video_status_key': rules.video_status_key,
            'calendar_ooo_status_key': rules.ooo_status_key,
            'calendar_meeting_status_key': rules.meeting_status_key,
            'calendar_idle_status_key': rules.idle_status_key,
            'calendar_idle_use_preferred': rules.idle_use_preferred,
            'calendar_detect_video_links': rules.detect_video_links,
            'timezone': display.timezone,
            'date_format': display.date_format,
            'time_format': display.time_format,
            'show_last_updated': display.show_last_updated,
            'show_status_source': display.show_status_source,
            'active_status_key': active.active_status_key,
            'active_status_label': active.active_status_label,
            'active_status_source': active.active_status_source,
            'active_event_ends_at': active.active_event_ends_at,
            'preferred_status_key': active.preferred_status_key,
            'preferred_status_label': active.preferred_status_label,
            'updated_at': active.updated_at,
            'calendar_cached_events': [asdict(e) for e in device.cached_events],
            'calendar_ids': list(device.calendar_ids),
            'outlook_calendar_ids': list(device.outlook_calendar_ids),
            'calendar_ics_url': device.calendar_ics_url,
        }

        # Optional attributes are left out rather than stored as NULL
        return _to_dynamo({k: v for k, v in item.items() if v is not None})
