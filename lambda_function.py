"""AWS Lambda handler for calendar-driven device status sync."""
import json
import logging
import os
import time
from dataclasses import asdict
from typing import Any, Dict

from notifier.webhook_pusher import WebhookPusher
from processor.errors import (
    DeviceNotFoundError,
    InvalidStatusError,
    NoCalendarConfiguredError,
    ProviderFetchError,
    WebhookError,
)
from processor.models import ProviderEvent
from processor.normalizer import EventNormalizer
from processor.reconciler import CacheReconciler
from processor.status_service import StatusService
from processor.sync_service import SyncService
from providers.ics_feed import IcsFeedClient
from scheduling.scheduler import EventBridgeScheduler, NullScheduler
from storage.device_store import DeviceStore


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    EXTRA_FIELDS = ('device_id', 'error_type', 'action', 'duration_seconds')

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def load_settings() -> Dict[str, Any]:
    """Read configuration from environment variables."""
    return {
        'table_name': os.environ.get('TABLE_NAME', 'device-status'),
        'log_level': os.environ.get('LOG_LEVEL', 'INFO'),
        'webhook_timeout': int(os.environ.get('WEBHOOK_TIMEOUT_SECONDS', '10')),
        'ics_timeout': int(os.environ.get('ICS_TIMEOUT_SECONDS', '30')),
        'scheduler_target_arn': os.environ.get('SCHEDULER_TARGET_ARN'),
        'scheduler_role_arn': os.environ.get('SCHEDULER_ROLE_ARN'),
        'scheduler_group': os.environ.get('SCHEDULER_GROUP', 'default'),
        'scheduler_min_lead_seconds': int(
            os.environ.get('SCHEDULER_MIN_LEAD_SECONDS', '10')
        ),
    }


def build_scheduler(settings: Dict[str, Any]):
    """EventBridge scheduler if configured, otherwise a no-op."""
    if not settings['scheduler_target_arn'] or not settings['scheduler_role_arn']:
        return NullScheduler()
    return EventBridgeScheduler(
        target_arn=settings['scheduler_target_arn'],
        role_arn=settings['scheduler_role_arn'],
        group_name=settings['scheduler_group'],
        min_lead_seconds=settings['scheduler_min_lead_seconds'],
    )


def _response(status_code: int, body: Dict[str, Any], start_time: float) -> Dict[str, Any]:
    body['duration_seconds'] = round(time.time() - start_time, 2)
    return {'statusCode': status_code, 'body': json.dumps(body)}


def _error_response(status_code: int, message: str, error: Exception,
                    start_time: float) -> Dict[str, Any]:
    return _response(status_code, {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__,
    }, start_time)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    Args:
        event: Trigger payload with an 'action' of apply, sync_ics,
            sync_events or set_status
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body
    """
    settings = load_settings()

    setup_logging(settings['log_level'])
    logger = logging.getLogger(__name__)

    start_time = time.time()
    event = event or {}
    action = event.get('action', 'apply')
    device_id = event.get('device_id')

    logger.info(
        f"Lambda execution started",
        extra={'action': action, 'device_id': device_id}
    )

    try:
        store = DeviceStore(table_name=settings['table_name'])
        pusher = WebhookPusher(timeout=settings['webhook_timeout'])
        reconciler = CacheReconciler(store, pusher, build_scheduler(settings))
        sync_service = SyncService(
            store, reconciler, ics_client=IcsFeedClient(timeout=settings['ics_timeout'])
        )

        if action == 'apply':
            if device_id:
                result = sync_service.apply_device(device_id)
                body = {'message': 'Cache applied', 'result': asdict(result)}
            else:
                batch = sync_service.apply_all()
                body = {'message': 'Cache applied', 'statistics': asdict(batch)}

        elif action == 'sync_ics':
            if device_id:
                result = sync_service.manual_ics_sync(device_id)
                body = {'message': 'Sync completed successfully', 'result': asdict(result)}
            else:
                batch = sync_service.sync_ics_feeds()
                body = {'message': 'Sync completed successfully', 'statistics': asdict(batch)}

        elif action == 'sync_events':
            provider = event.get('provider')
            if not device_id or provider not in EventNormalizer.PROVIDERS:
                return _response(400, {
                    'message': 'sync_events requires device_id and a known provider'
                }, start_time)
            provider_events = [
                ProviderEvent(provider=provider, payload=record)
                for record in event.get('events') or []
            ]
            result = sync_service.sync_events(device_id, provider_events)
            body = {'message': 'Sync completed successfully', 'result': asdict(result)}

        elif action == 'set_status':
            if not device_id:
                return _response(400, {'message': 'set_status requires device_id'}, start_time)
            status_service = StatusService(store, pusher)
            status = status_service.set_status(
                device_id,
                event.get('status_key'),
                event.get('status_label'),
                event.get('source') or 'Manual',
            )
            body = {'message': 'Status updated', 'status': asdict(status)}

        else:
            return _response(400, {'message': f"Unknown action: {action}"}, start_time)

        logger.info(
            f"Lambda execution completed successfully",
            extra={'action': action, 'device_id': device_id,
                   'duration_seconds': round(time.time() - start_time, 2)}
        )
        return _response(200, body, start_time)

    except DeviceNotFoundError as e:
        logger.warning(str(e), extra={'device_id': device_id})
        return _error_response(404, 'Device not found', e, start_time)

    except (NoCalendarConfiguredError, InvalidStatusError) as e:
        logger.warning(str(e), extra={'device_id': device_id})
        return _error_response(400, str(e), e, start_time)

    except ProviderFetchError as e:
        # Cache is left untouched so the last classification stays in effect
        logger.error(
            f"Failed to fetch calendar events: {e}",
            extra={'device_id': device_id, 'error_type': type(e).__name__}
        )
        return _error_response(502, 'Failed to fetch calendar events', e, start_time)

    except WebhookError as e:
        logger.error(
            f"Webhook delivery failed: {e}",
            extra={'device_id': device_id, 'error_type': type(e).__name__}
        )
        return _error_response(502, 'Status saved but webhook delivery failed', e, start_time)

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'device_id': device_id, 'error_type': type(e).__name__},
            exc_info=True
        )
        return _error_response(500, 'Sync failed', e, start_time)
