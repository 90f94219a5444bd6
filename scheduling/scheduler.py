"""Delayed re-invocation of the cache reconciler."""
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

import boto3
from botocore.exceptions import ClientError

from processor.normalizer import epoch_ms_now

logger = logging.getLogger(__name__)


class NullScheduler:
    """Scheduler used when no target is configured. Drops every request."""

    def schedule_apply(self, device_id: str, run_at_ms: Optional[int]) -> bool:
        logger.debug(
            f"Scheduling disabled, not scheduling device {device_id} at {run_at_ms}"
        )
        return False


class EventBridgeScheduler:
    """Creates one-shot EventBridge Scheduler schedules that re-invoke the Lambda.

    Delivery is at-least-once and advisory: every invocation recomputes
    state from the store, so late, early or duplicate runs are harmless.
    """

    def __init__(self, target_arn: str, role_arn: str,
                 group_name: str = 'default', min_lead_seconds: int = 10,
                 client=None, clock: Callable[[], int] = epoch_ms_now):
        """
        Initialize the scheduler client.

        Args:
            target_arn: ARN of the Lambda function to invoke
            role_arn: IAM role EventBridge Scheduler assumes to invoke it
            group_name: Schedule group name
            min_lead_seconds: Run-at times are clamped to now plus this lead
            client: boto3 scheduler client (created if omitted)
            clock: Returns the current time in epoch milliseconds
        """
        self.target_arn = target_arn
        self.role_arn = role_arn
        self.group_name = group_name
        self.min_lead_ms = min_lead_seconds * 1000
        self.client = client or boto3.client('scheduler')
        self.clock = clock

    def schedule_apply(self, device_id: str, run_at_ms: Optional[int]) -> bool:
        """
        Ask for the reconciler to run for a device at or after run_at_ms.

        Returns:
            True if a new schedule was created
        """
        if not device_id or not run_at_ms:
            return False

        safe_run_at = max(self.clock() + self.min_lead_ms, run_at_ms)
        # at() has second resolution; round up so the run is never early
        run_at_seconds = -(-safe_run_at // 1000)
        expression = datetime.fromtimestamp(
            run_at_seconds, tz=timezone.utc
        ).strftime('at(%Y-%m-%dT%H:%M:%S)')
        name = self.schedule_name(device_id, run_at_ms)

        try:
            self.client.create_schedule(
                Name=name,
                GroupName=self.group_name,
                ScheduleExpression=expression,
                ScheduleExpressionTimezone='UTC',
                FlexibleTimeWindow={'Mode': 'OFF'},
                ActionAfterCompletion='DELETE',
                Target={
                    'Arn': self.target_arn,
                    'RoleArn': self.role_arn,
                    'Input': json.dumps({'action': 'apply', 'device_id': device_id}),
                },
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConflictException':
                logger.debug(f"Schedule {name} already exists")
                return False
            logger.error(
                f"Failed to schedule cache apply for device {device_id}: {e}"
            )
            return False

        logger.info(
            f"Scheduled cache apply for device {device_id} with {expression}"
        )
        return True

    @staticmethod
    def schedule_name(device_id: str, run_at_ms: int) -> str:
        """Deterministic name so repeated requests for one instant collide."""
        digest = hashlib.sha256(device_id.encode('utf-8')).hexdigest()[:16]
        return f"cache-apply-{digest}-{run_at_ms}"
