"""Retry classification and exponential backoff scheduling.

The controller answers two questions for the pipeline: should this failure be
retried, and how long to wait before the next attempt.

    delay = base_delay * 2 ** attempt          (attempt starts at 0)
    delay = min(delay + jitter, max_delay)

A parseable Retry-After header on a retryable HTTP error replaces the
computed delay, still capped at max_delay.

Example usage:
    controller = RetryController(RetryPolicy(max_retries=3, base_delay=1.0))
    state = RetryState(descriptor)

    if controller.should_retry(error, state.attempt):
        state.record(error, controller.next_delay(state.attempt))
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import FrozenSet, Optional

from .descriptors import RequestDescriptor
from .errors import ConfigurationError, HttpError, RetryExhausted, TransportError, TransportErrorKind

# HTTP status codes that trigger automatic retry
RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({408, 429, 500, 502, 503, 504})

RETRYABLE_TRANSPORT_KINDS: FrozenSet[TransportErrorKind] = frozenset(
    {TransportErrorKind.CONNECTION_FAILED, TransportErrorKind.TIMEOUT}
)


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Retries allowed after the first attempt (default: 3)
        base_delay: Delay in seconds before the first retry (default: 1.0)
        max_delay: Upper bound for any single delay (default: 30.0)
        jitter: Random extra delay as a fraction of the delay (default: 0.0)
        retryable_statuses: HTTP status codes that trigger retry
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.0
    retryable_statuses: FrozenSet[int] = field(default_factory=lambda: RETRYABLE_STATUS_CODES)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be non-negative")
        if self.base_delay < 0:
            raise ConfigurationError("base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ConfigurationError("max_delay must be >= base_delay")
        if not 0 <= self.jitter <= 1:
            raise ConfigurationError("jitter must be between 0 and 1")


@dataclass
class RetryState:
    """Retry bookkeeping for one logical request.

    Attributes:
        descriptor: The request being retried (never modified)
        attempt: Failed attempts so far; only ever increases
        next_delay: Delay scheduled before the next attempt
        last_error: Error raised by the latest attempt
    """

    descriptor: RequestDescriptor
    attempt: int = 0
    next_delay: float = 0.0
    last_error: Optional[Exception] = None

    def record(self, error: Exception, delay: float) -> None:
        """Register a failed attempt that will be retried after ``delay``."""
        self.last_error = error
        self.next_delay = delay
        self.attempt += 1

    @property
    def sends(self) -> int:
        """Underlying sends performed once the current attempt has failed."""
        return self.attempt + 1

    def exhausted(self, error: Exception) -> RetryExhausted:
        self.last_error = error
        return RetryExhausted(last_error=error, attempts=self.sends)


class RetryController:
    """Decides whether and when to resubmit a failed request."""

    def __init__(self, policy: Optional[RetryPolicy] = None) -> None:
        self.policy = policy or RetryPolicy()

    @property
    def max_retries(self) -> int:
        return self.policy.max_retries

    def is_retryable(self, error: Exception) -> bool:
        """Classify an error regardless of how many attempts were made."""
        if isinstance(error, HttpError):
            return error.status in self.policy.retryable_statuses
        if isinstance(error, TransportError):
            return error.kind in RETRYABLE_TRANSPORT_KINDS
        return False

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """True when ``error`` is transient and ``attempt`` is below the bound."""
        return attempt < self.policy.max_retries and self.is_retryable(error)

    def next_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Calculate the delay before the next attempt.

        Args:
            attempt: Failed attempts so far (0-indexed)
            retry_after: Server-specified delay from a Retry-After header

        Returns:
            Delay in seconds
        """
        if retry_after is not None:
            return min(max(retry_after, 0.0), self.policy.max_delay)

        delay = self.policy.base_delay * (2 ** attempt)
        if self.policy.jitter:
            delay += delay * self.policy.jitter * random.random()  # noqa: S311
        return min(delay, self.policy.max_delay)

    def delay_for(self, error: Exception, attempt: int) -> float:
        """Backoff for ``error``, honouring Retry-After on HTTP errors."""
        retry_after = None
        if isinstance(error, HttpError):
            retry_after = parse_retry_after(error.headers)
        return self.next_delay(attempt, retry_after)


def parse_retry_after(headers) -> Optional[float]:
    """
    Parse a Retry-After header.

    Supports both:
        - Seconds: "60"
        - HTTP date: "Wed, 21 Oct 2024 07:28:00 GMT"

    Returns:
        Seconds to wait, or None if the header is missing or invalid
    """
    value = None
    for name, header_value in (headers or {}).items():
        if name.lower() == "retry-after":
            value = header_value
            break
    if not value:
        return None

    try:
        return max(float(value), 0.0)
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


__all__ = [
    "RETRYABLE_STATUS_CODES",
    "RetryPolicy",
    "RetryState",
    "RetryController",
    "parse_retry_after",
]
