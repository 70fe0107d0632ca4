"""
Rate-limited retry executor used around every Pure API call.

Policy, per call:
  - sleep ``rate_limit_delay`` before the first attempt, always;
  - on failure, while attempts used < ``max_retries``: log, sleep the current
    backoff, double it, try again;
  - after ``max_retries + 1`` failed attempts raise ``RetryExhaustedError``
    chained from the last failure.

Every ``Exception`` is treated as retryable; there is no jitter and no state
shared between calls. With a 6 s delay the API sees at most one request per
6 s from this process, because all calls are sequential.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from pure_ingest.errors import RetryExhaustedError

if TYPE_CHECKING:
    from pure_ingest.config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters, in seconds."""

    max_retries: int = 10
    initial_backoff: float = 6.0
    rate_limit_delay: float = 6.0

    @classmethod
    def from_config(cls, config: "RetryConfig") -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            initial_backoff=config.initial_backoff_seconds,
            rate_limit_delay=config.rate_limit_delay_seconds,
        )


def with_retry_and_rate_limit(
    operation: Callable[[], T],
    policy: RetryPolicy,
    context: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` under ``policy``.

    Args:
        operation: Zero-argument callable performing one attempt.
        policy: Delay, backoff and retry budget.
        context: Human-readable description used in log lines and errors.
        sleep: Blocking wait; injectable for tests.

    Returns:
        Whatever the first successful attempt returns.

    Raises:
        RetryExhaustedError: If every attempt failed.
    """
    retry_count = 0
    backoff = policy.initial_backoff

    while True:
        if retry_count == 0:
            sleep(policy.rate_limit_delay)
        else:
            logger.info(
                "%s - Waiting %.1fs before retry attempt %d/%d",
                context, backoff, retry_count, policy.max_retries,
            )
            sleep(backoff)
            backoff *= 2

        try:
            result = operation()
        except Exception as exc:
            if retry_count < policy.max_retries:
                logger.error(
                    "%s - Attempt %d/%d failed: %s. Retrying with exponential backoff...",
                    context, retry_count + 1, policy.max_retries + 1, exc,
                )
                retry_count += 1
                continue
            logger.error(
                "%s - Failed after %d retries: %s", context, policy.max_retries, exc,
            )
            raise RetryExhaustedError(context, retry_count + 1, exc) from exc

        if retry_count > 0:
            logger.info("%s - Success after %d retries", context, retry_count)
        return result
