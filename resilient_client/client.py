"""
================================================================================
API Client
================================================================================

Public entry point. ApiClient composes one instance of each component:

    AuthManager -> SlidingWindowRateLimiter -> HttpTransport
                -> RetryController -> ResponseValidator

and runs every call through a RequestPipeline. The rate limiter is shared by
all callers of the same client, so concurrent tasks and batches draw from a
single budget.

Usage:
    >>> async with ApiClient(ClientConfig(base_url="https://api.example.com")) as client:
    ...     await client.login({"username": "qa", "password": "secret"})
    ...     response = await client.get("/users/1", schema=USER_SCHEMA)
    ...     print(response.body["name"])

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import asyncio
import mimetypes
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, Mapping, Optional, Union

import httpx
from loguru import logger

from .auth import ApiKeyAuth, AuthConfig, AuthManager, BearerAuth
from .batch import BatchExecutor, BatchResult
from .config_loader import ClientConfig, ConfigLoader
from .descriptors import LatencyMeasurement, RequestDescriptor, ResponseDescriptor, TransferMode, merge_headers
from .pipeline import RequestPipeline
from .rate_limiter import SlidingWindowRateLimiter
from .reporting import RequestReporter
from .response_validator import ResponseValidator, ValidationSchema
from .retry import RetryController, RetryPolicy
from .run_context import RunContext
from .transfer import DEFAULT_CHUNK_SIZE, RewindableSource, StreamSink
from .transport import HttpTransport


BatchInput = Union[RequestDescriptor, Mapping[str, Any]]


def _lookup(body: Any, path: str) -> Any:
    """Dot-path lookup into a parsed JSON body; None when absent."""
    current = body
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


class ApiClient:
    """
    Resilient asynchronous API client for test automation.

    Args:
        config: Client options (defaults to ClientConfig())
        transport: Optional httpx transport, e.g. httpx.MockTransport
        run_context: Run statistics receiving latency measurements
        reporting: Attach exchanges to Allure
        sleep: Coroutine used for retry backoff waits
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        run_context: Optional[RunContext] = None,
        reporting: bool = True,
        sleep=asyncio.sleep,
    ) -> None:
        self.config = config or ClientConfig()
        self.run_context = run_context
        self._headers: Dict[str, str] = merge_headers(self.config.default_headers)

        self.transport = HttpTransport(self.config, transport)
        self.auth = AuthManager(self.config.auth)
        self.limiter = SlidingWindowRateLimiter(self.config.rate_limit, self.config.rate_interval)
        self.retry = RetryController(
            RetryPolicy(
                max_retries=self.config.max_retries,
                base_delay=self.config.backoff_base,
                # a base above the default cap raises the cap with it
                max_delay=max(self.config.backoff_cap, self.config.backoff_base),
                jitter=self.config.backoff_jitter,
            )
        )
        self.validator = ResponseValidator()
        self.reporter = RequestReporter(self.config.base_url, enabled=reporting)
        self.pipeline = RequestPipeline(
            self.transport,
            self.auth,
            self.limiter,
            self.retry,
            self.validator,
            self.reporter,
            deadline=self.config.deadline,
            sleep=sleep,
        )
        self.batch = BatchExecutor(self.pipeline)

        logger.info(
            f"ApiClient configured for {self.config.base_url} "
            f"(rate {self.config.rate_limit}/{self.config.rate_interval}s, "
            f"retries {self.config.max_retries}, auth {type(self.auth.current).__name__})"
        )

    @classmethod
    def from_config_file(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        **kwargs: Any,
    ) -> "ApiClient":
        """Build a client from YAML configuration plus environment overrides."""
        return cls(ClientConfig.from_loader(ConfigLoader(config_path)), **kwargs)

    async def __aenter__(self) -> "ApiClient":
        self.transport.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.transport.aclose()

    # =========================================================================
    # Requests
    # =========================================================================

    def build(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        schema: Optional[ValidationSchema] = None,
        timeout: Optional[float] = None,
        transfer: TransferMode = TransferMode.NONE,
    ) -> RequestDescriptor:
        """Descriptor carrying the client's default headers under ``headers``."""
        return RequestDescriptor(
            method=method,
            path=path,
            body=body,
            headers=merge_headers(self._headers, headers),
            params=params or {},
            schema=schema,
            timeout=timeout,
            transfer=transfer,
        )

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        schema: Optional[ValidationSchema] = None,
        timeout: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
    ) -> ResponseDescriptor:
        """
        Run one logical request through the pipeline.

        Raises:
            HttpError, TransportError, ValidationError, RetryExhausted,
            DeadlineExceeded, Cancelled
        """
        descriptor = self.build(
            method, path, body, params=params, headers=headers, schema=schema, timeout=timeout
        )
        return await self.pipeline.execute(descriptor, cancel=cancel, deadline=deadline)

    async def get(self, path: str, **options: Any) -> ResponseDescriptor:
        return await self.request("GET", path, **options)

    async def post(self, path: str, body: Any = None, **options: Any) -> ResponseDescriptor:
        return await self.request("POST", path, body, **options)

    async def put(self, path: str, body: Any = None, **options: Any) -> ResponseDescriptor:
        return await self.request("PUT", path, body, **options)

    async def patch(self, path: str, body: Any = None, **options: Any) -> ResponseDescriptor:
        return await self.request("PATCH", path, body, **options)

    async def delete(self, path: str, **options: Any) -> ResponseDescriptor:
        return await self.request("DELETE", path, **options)

    # =========================================================================
    # Session helpers
    # =========================================================================

    async def login(self, credentials: Mapping[str, Any], **options: Any) -> ResponseDescriptor:
        """
        POST credentials to the login endpoint and install the returned token.

        The token is read from ``config.token_field`` (dot path). When the
        response carries no token the current credentials are kept.
        """
        try:
            response = await self.post(self.config.login_path, dict(credentials), **options)
        except Exception as e:
            logger.error(f"Authentication failed: {e}")
            raise

        token = _lookup(response.body, self.config.token_field)
        if token:
            self.auth.install(BearerAuth(str(token)))
            logger.info("Authentication successful")
        else:
            logger.warning(f"Login response has no '{self.config.token_field}' field")
        return response

    async def logout(self, **options: Any) -> ResponseDescriptor:
        """
        POST to the logout endpoint, then restore the construction-time credentials.

        A failed logout keeps the current credentials and re-raises.
        """
        try:
            response = await self.post(self.config.logout_path, **options)
        except Exception as e:
            logger.error(f"Logout failed, credentials kept: {e}")
            raise

        self.auth.reset()
        logger.info("Logged out; credentials reset")
        return response

    async def health_check(self, **options: Any) -> ResponseDescriptor:
        try:
            return await self.get(self.config.health_path, **options)
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            raise

    async def measure_latency(
        self,
        method: str,
        path: str,
        body: Any = None,
        **options: Any,
    ) -> LatencyMeasurement:
        """
        Time a full logical request, including rate-limit waits and retries.

        The measurement is recorded in the client's run context when present.
        """
        start = time.perf_counter()
        try:
            response = await self.request(method, path, body, **options)
        except Exception:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            logger.error(f"{method.upper()} {path} failed after {elapsed_ms:.0f} ms")
            raise

        measurement = LatencyMeasurement(response, (time.perf_counter() - start) * 1000.0)
        logger.info(f"{method.upper()} {path} took {measurement.elapsed_ms:.0f} ms")
        if self.run_context is not None:
            self.run_context.record_latency(measurement)
        return measurement

    # =========================================================================
    # Credentials and headers
    # =========================================================================

    def set_auth(self, config: AuthConfig) -> None:
        self.auth.install(config)

    def set_auth_token(self, token: str) -> None:
        self.auth.install(BearerAuth(token))

    def set_api_key(self, key: str, header_name: str = "X-API-Key") -> None:
        self.auth.install(ApiKeyAuth(key, header_name))

    def set_header(self, name: str, value: str) -> None:
        """Add or replace a default header for requests built from now on."""
        self._headers = merge_headers(self._headers, {name: value})

    def remove_header(self, name: str) -> None:
        self._headers = {k: v for k, v in self._headers.items() if k.lower() != name.lower()}

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._headers)

    # =========================================================================
    # Batches and transfers
    # =========================================================================

    def _batch_descriptor(self, item: BatchInput) -> RequestDescriptor:
        if isinstance(item, RequestDescriptor):
            return replace(item, headers=merge_headers(self._headers, item.headers))
        options = dict(item.get("options") or {})
        return self.build(
            item.get("method", "GET"),
            item.get("path") or item["endpoint"],
            item.get("body", item.get("data")),
            **options,
        )

    async def run_batch(
        self,
        requests: Iterable[BatchInput],
        *,
        concurrency: int = 1,
        cancel: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """
        Run several requests, capturing each outcome.

        Items are RequestDescriptors or mappings such as
        ``{"method": "POST", "endpoint": "/users", "data": {...}}``.
        """
        descriptors = [self._batch_descriptor(item) for item in requests]
        return await self.batch.run_batch(descriptors, concurrency=concurrency, cancel=cancel)

    async def upload(
        self,
        path: str,
        source: Union[RewindableSource, BinaryIO, bytes],
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        field_name: str = "file",
        filename: Optional[str] = None,
        content_type: str = "application/octet-stream",
        **options: Any,
    ) -> ResponseDescriptor:
        """
        Multipart upload of ``source`` with ``metadata`` as form fields.

        Raises:
            NonRetryableStream: ``source`` cannot be rewound (raised before sending)
        """
        if not isinstance(source, RewindableSource):
            source = RewindableSource(source, field_name, filename, content_type)
        cancel = options.pop("cancel", None)
        deadline = options.pop("deadline", None)
        descriptor = self.build(
            "POST", path, dict(metadata or {}), transfer=TransferMode.UPLOAD_STREAM, **options
        )
        logger.info(f"Uploading {source.filename} to {path}")
        return await self.pipeline.execute(descriptor, cancel=cancel, deadline=deadline, source=source)

    async def download(
        self,
        path: str,
        sink: Union[StreamSink, Any],
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        **options: Any,
    ) -> ResponseDescriptor:
        """Stream the response body of GET ``path`` into ``sink``."""
        if not isinstance(sink, StreamSink):
            sink = StreamSink(sink, chunk_size)
        cancel = options.pop("cancel", None)
        deadline = options.pop("deadline", None)
        descriptor = self.build("GET", path, transfer=TransferMode.DOWNLOAD_STREAM, **options)
        response = await self.pipeline.execute(descriptor, cancel=cancel, deadline=deadline, sink=sink)
        logger.info(f"Downloaded {response.bytes_transferred} bytes from {path}")
        return response

    async def upload_file(
        self,
        path: str,
        file_path: Union[str, Path],
        metadata: Optional[Mapping[str, Any]] = None,
        **options: Any,
    ) -> ResponseDescriptor:
        file_path = Path(file_path)
        if "content_type" not in options:
            options["content_type"] = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        with file_path.open("rb") as stream:
            return await self.upload(path, stream, metadata, filename=file_path.name, **options)

    async def download_file(
        self,
        path: str,
        output_path: Union[str, Path],
        **options: Any,
    ) -> ResponseDescriptor:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("wb") as stream:
            return await self.download(path, stream, **options)

    # =========================================================================
    # Rate limit introspection
    # =========================================================================

    @property
    def request_count(self) -> int:
        """Requests admitted within the current rate window."""
        return self.limiter.in_window

    def reset_rate_limit(self) -> None:
        self.limiter.reset()


__all__ = ["ApiClient"]
