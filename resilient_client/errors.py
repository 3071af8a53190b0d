"""
================================================================================
Client Error Taxonomy
================================================================================

Every failure the client surfaces is one of the exceptions below. Raw httpx
exceptions never leave the client; they are wrapped in TransportError, and any
other failure while preparing or sending a request becomes RequestBuildError.

    ApiClientError
      ├── TransportError        (ConnectionFailed / Timeout / Protocol)
      ├── RequestBuildError     (request could not be encoded or sent)
      ├── HttpError             (non-success HTTP status)
      ├── ValidationError       (response body violates its schema)
      ├── RetryExhausted        (retryable failures outlived the retry bound)
      ├── RateLimitMisconfigured
      ├── Cancelled
      ├── DeadlineExceeded
      ├── NonRetryableStream
      └── ConfigurationError

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from .descriptors import RequestDescriptor


class ApiClientError(Exception):
    """Base exception for all client errors."""
    pass


class ConfigurationError(ApiClientError):
    """Raised when configuration loading or access fails."""
    pass


class TransportErrorKind(Enum):
    """Classification of a failed network exchange."""
    CONNECTION_FAILED = "connection_failed"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"


class TransportError(ApiClientError):
    """
    A single exchange failed below the HTTP layer.

    Attributes:
        kind: What went wrong (connection, timeout, protocol)
        descriptor: Request that was being sent
        cause: Underlying httpx exception
    """

    def __init__(
        self,
        kind: TransportErrorKind,
        message: str,
        descriptor: Optional["RequestDescriptor"] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.descriptor = descriptor
        self.cause = cause


class RequestBuildError(ApiClientError):
    """
    The request could not be encoded or handed to the transport.

    Raised for failures that are not network errors, such as a body that
    cannot be serialised to JSON. Never retried.

    Attributes:
        descriptor: Request that was being prepared
        cause: Original exception
    """

    def __init__(
        self,
        descriptor: Optional["RequestDescriptor"],
        cause: BaseException,
    ) -> None:
        target = f"{descriptor.method} {descriptor.path}" if descriptor else "request"
        super().__init__(f"Could not send {target}: {type(cause).__name__}: {cause}")
        self.descriptor = descriptor
        self.cause = cause


class HttpError(ApiClientError):
    """
    The server answered with an error status.

    Attributes:
        status: HTTP status code
        body: Parsed response body (JSON, text or bytes)
        headers: Response headers
        descriptor: Request that produced the response
    """

    def __init__(
        self,
        status: int,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        descriptor: Optional["RequestDescriptor"] = None,
    ) -> None:
        target = f"{descriptor.method} {descriptor.path}" if descriptor else "request"
        super().__init__(f"{target} failed with HTTP {status}")
        self.status = status
        self.body = body
        self.headers = dict(headers or {})
        self.descriptor = descriptor


class ValidationError(ApiClientError):
    """
    Response body does not match the declared schema.

    Attributes:
        field_path: Dot-notation path of the offending field
        expected: Description of what the schema required
        actual: Value found in the response (None when missing)
    """

    def __init__(self, field_path: str, expected: Any, actual: Any, message: str = "") -> None:
        detail = message or f"expected {expected!r}, got {actual!r}"
        super().__init__(f"Response validation failed at '{field_path}': {detail}")
        self.field_path = field_path
        self.expected = expected
        self.actual = actual


class RetryExhausted(ApiClientError):
    """
    Retryable failures continued past the configured maximum.

    Attributes:
        last_error: Error raised by the final attempt
        attempts: Number of underlying sends performed
    """

    def __init__(self, last_error: Exception, attempts: int) -> None:
        super().__init__(f"Giving up after {attempts} attempts. Last error: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class RateLimitMisconfigured(ApiClientError):
    """Rate budget or interval cannot admit any request."""

    def __init__(self, budget: Any, interval: Any) -> None:
        super().__init__(
            f"Invalid rate limit: budget={budget!r} per interval={interval!r}s "
            "(budget must be >= 1 and interval > 0)"
        )
        self.budget = budget
        self.interval = interval


class Cancelled(ApiClientError):
    """The caller's cancellation signal fired while the request was pending."""

    def __init__(self, state: Any = None) -> None:
        where = f" while {state.value}" if state is not None and hasattr(state, "value") else ""
        super().__init__(f"Request cancelled{where}")
        self.state = state


class DeadlineExceeded(ApiClientError):
    """The overall deadline for a logical request ran out."""

    def __init__(self, deadline: float, last_error: Optional[Exception] = None) -> None:
        suffix = f". Last error: {last_error}" if last_error else ""
        super().__init__(f"Deadline of {deadline:.3f}s exceeded{suffix}")
        self.deadline = deadline
        self.last_error = last_error


class NonRetryableStream(ApiClientError):
    """A streamed body cannot be rewound for another attempt."""

    def __init__(self, stream: Any, reason: str = "stream is not seekable") -> None:
        super().__init__(f"Cannot restart transfer: {reason}")
        self.stream = stream


__all__ = [
    "ApiClientError",
    "ConfigurationError",
    "TransportErrorKind",
    "TransportError",
    "RequestBuildError",
    "HttpError",
    "ValidationError",
    "RetryExhausted",
    "RateLimitMisconfigured",
    "Cancelled",
    "DeadlineExceeded",
    "NonRetryableStream",
]
