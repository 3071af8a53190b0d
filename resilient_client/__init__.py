"""
================================================================================
Resilient API Client
================================================================================

Asynchronous HTTP client for API test automation: pluggable authentication,
a shared sliding-window rate limiter, bounded retries with exponential
backoff, response schema validation, batches and streamed transfers.

Modules:
    - client: ApiClient, the public entry point
    - pipeline: Per-request state machine (auth -> rate limit -> send -> retry -> validate)
    - transport: httpx adapter and error mapping
    - auth / rate_limiter / retry / response_validator: pipeline components
    - batch / transfer: batch execution and rewindable streams
    - config_loader / logging_setup / reporting / run_context: ambient support

Author: Automation Team
License: MIT
================================================================================
"""

from .auth import (
    ApiKeyAuth,
    AuthConfig,
    AuthManager,
    BasicAuth,
    BearerAuth,
    CustomAuth,
    NoAuth,
    auth_from_mapping,
)
from .batch import BatchExecutor, BatchItem, BatchResult
from .client import ApiClient
from .config_loader import ClientConfig, ConfigLoader
from .descriptors import (
    LatencyMeasurement,
    RequestDescriptor,
    ResponseDescriptor,
    TransferMode,
)
from .errors import (
    ApiClientError,
    Cancelled,
    ConfigurationError,
    DeadlineExceeded,
    HttpError,
    NonRetryableStream,
    RateLimitMisconfigured,
    RequestBuildError,
    RetryExhausted,
    TransportError,
    TransportErrorKind,
    ValidationError,
)
from .logging_setup import get_logger, init_logger
from .pipeline import PipelineState, RequestCall, RequestPipeline
from .rate_limiter import SlidingWindowRateLimiter
from .response_validator import (
    ResponseValidator,
    ValidationRule,
    ValidationSchema,
    ValidationType,
)
from .retry import RetryController, RetryPolicy
from .run_context import RunContext
from .transfer import RewindableSource, StreamSink

__version__ = "2.0.0"

__all__ = [
    "ApiClient",
    "ClientConfig",
    "ConfigLoader",
    "RequestDescriptor",
    "ResponseDescriptor",
    "LatencyMeasurement",
    "TransferMode",
    "AuthConfig",
    "AuthManager",
    "NoAuth",
    "BearerAuth",
    "BasicAuth",
    "ApiKeyAuth",
    "CustomAuth",
    "auth_from_mapping",
    "SlidingWindowRateLimiter",
    "RetryPolicy",
    "RetryController",
    "ResponseValidator",
    "ValidationRule",
    "ValidationSchema",
    "ValidationType",
    "PipelineState",
    "RequestCall",
    "RequestPipeline",
    "BatchExecutor",
    "BatchItem",
    "BatchResult",
    "RewindableSource",
    "StreamSink",
    "RunContext",
    "init_logger",
    "get_logger",
    "ApiClientError",
    "ConfigurationError",
    "TransportError",
    "TransportErrorKind",
    "HttpError",
    "ValidationError",
    "RetryExhausted",
    "RateLimitMisconfigured",
    "RequestBuildError",
    "Cancelled",
    "DeadlineExceeded",
    "NonRetryableStream",
]
