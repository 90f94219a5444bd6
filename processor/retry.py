"""Shared HTTP retry policy with bounded exponential backoff."""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

import requests

logger = logging.getLogger(__name__)


def is_retryable_status(status_code: int) -> bool:
    """5xx and 429 are transient; anything else is final."""
    return status_code >= 500 or status_code == 429


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


@dataclass
class RetryPolicy:
    """How many times to try an HTTP call and how long to wait between tries."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 4.0
    retryable: Callable[[int], bool] = is_retryable_status
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def backoff(self, attempt: int) -> float:
        """Delay after the given zero-based attempt."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def execute(self, send: Callable[[], requests.Response],
                description: str = 'request') -> requests.Response:
        """
        Call send until it succeeds, returns a final status, or attempts run out.

        Args:
            send: Performs one HTTP attempt
            description: Used in log messages

        Returns:
            The last response received. Callers inspect its status.

        Raises:
            requests.RequestException: If the last attempt failed in transport
        """
        for attempt in range(self.max_attempts):
            try:
                response = send()
            except requests.RequestException as e:
                if attempt >= self.max_attempts - 1:
                    logger.error(
                        f"All {self.max_attempts} attempts of {description} "
                        f"failed. Last error: {e}"
                    )
                    raise
                reason = str(e)
            else:
                if is_success(response.status_code):
                    return response
                if not self.retryable(response.status_code):
                    return response
                if attempt >= self.max_attempts - 1:
                    logger.error(
                        f"All {self.max_attempts} attempts of {description} "
                        f"failed. Last status: {response.status_code}"
                    )
                    return response
                reason = f"status {response.status_code}"

            delay = self.backoff(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{self.max_attempts}): "
                f"{reason}. Retrying in {delay} seconds..."
            )
            self.sleep(delay)

        raise ValueError('max_attempts must be at least 1')
