"""
================================================================================
HTTP Transport Adapter
================================================================================

Thin wrapper around httpx.AsyncClient. One call to ``send()`` performs exactly
one network exchange: no retry, no rate limiting, no credentials. Failures
below HTTP are mapped onto TransportError so that no raw httpx exception
reaches callers.

Usage:
    >>> async with HttpTransport(ClientConfig(base_url="http://svc")) as transport:
    ...     response = await transport.send(RequestDescriptor("GET", "/health"))
    ...     print(response.status, response.body)

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .config_loader import ClientConfig
from .descriptors import RequestDescriptor, ResponseDescriptor, TransferMode
from .errors import ApiClientError, RequestBuildError, TransportError, TransportErrorKind
from .transfer import RewindableSource, StreamSink


JSON_CONTENT_TYPES = ("application/json", "application/problem+json")
TEXT_CONTENT_TYPES = ("application/xml", "application/javascript", "application/x-www-form-urlencoded")


def parse_body(response: httpx.Response) -> Any:
    """
    Decode a response body by content type.

    JSON types are parsed, text types decoded, anything else returned as
    raw bytes. An empty body is None.
    """
    content = response.content
    if not content:
        return None

    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type in JSON_CONTENT_TYPES or content_type.endswith("+json"):
        try:
            return response.json()
        except ValueError:
            logger.warning(f"Response declared {content_type} but is not valid JSON")
            return response.text
    if content_type.startswith("text/") or content_type in TEXT_CONTENT_TYPES:
        return response.text
    return content


class HttpTransport:
    """
    Issues single HTTP exchanges over a pooled httpx.AsyncClient.

    Args:
        config: Client configuration (base URL, timeout, TLS, redirects)
        transport: Optional httpx transport, e.g. httpx.MockTransport in tests
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self.session: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "HttpTransport":
        """Enter context manager - initialize HTTP session."""
        self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - close HTTP session."""
        await self.aclose()

    def open(self) -> None:
        if self.session is None:
            self.session = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout),
                follow_redirects=self.config.follow_redirects,
                verify=self.config.verify_ssl,
                transport=self._transport,
            )

    async def aclose(self) -> None:
        if self.session is not None:
            await self.session.aclose()
            self.session = None

    async def send(
        self,
        descriptor: RequestDescriptor,
        *,
        source: Optional[RewindableSource] = None,
        sink: Optional[StreamSink] = None,
        timeout: Optional[float] = None,
    ) -> ResponseDescriptor:
        """
        Perform one exchange.

        Args:
            descriptor: Request to send (already decorated with credentials)
            source: Upload content for UPLOAD_STREAM requests
            sink: Destination for DOWNLOAD_STREAM response bodies
            timeout: Timeout for this attempt; falls back to the descriptor's
                     override, then the configured default

        Returns:
            ResponseDescriptor for whatever status the server returned

        Raises:
            TransportError: Connection failure, timeout, or protocol error
            RequestBuildError: The request could not be encoded
        """
        if self.session is None:
            raise ApiClientError(
                "HttpTransport must be opened before sending. "
                "Use 'async with HttpTransport(config) as transport:'"
            )

        attempt_timeout = timeout if timeout is not None else descriptor.timeout
        if attempt_timeout is None:
            attempt_timeout = self.config.timeout

        start = time.perf_counter()
        try:
            kwargs = self._build_request_kwargs(descriptor, source, attempt_timeout)
            if descriptor.transfer is TransferMode.DOWNLOAD_STREAM and sink is not None:
                return await self._download(descriptor, sink, kwargs, start)

            response = await self.session.request(descriptor.method, descriptor.path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(
                TransportErrorKind.TIMEOUT,
                f"{descriptor.method} {descriptor.path} timed out after {attempt_timeout}s",
                descriptor,
                e,
            ) from e
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise TransportError(TransportErrorKind.PROTOCOL, str(e), descriptor, e) from e
        except httpx.TransportError as e:
            raise TransportError(
                TransportErrorKind.CONNECTION_FAILED,
                f"{descriptor.method} {descriptor.path}: {str(e) or type(e).__name__}",
                descriptor,
                e,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(TransportErrorKind.PROTOCOL, str(e), descriptor, e) from e
        except (TypeError, ValueError) as e:
            # e.g. a body the JSON encoder rejects
            raise RequestBuildError(descriptor, e) from e

        return ResponseDescriptor(
            status=response.status_code,
            headers=dict(response.headers),
            body=parse_body(response),
            elapsed=time.perf_counter() - start,
            method=descriptor.method,
            path=descriptor.path,
        )

    async def _download(
        self,
        descriptor: RequestDescriptor,
        sink: StreamSink,
        kwargs: Dict[str, Any],
        start: float,
    ) -> ResponseDescriptor:
        """Stream the body into ``sink``; error statuses are read in full instead."""
        async with self.session.stream(descriptor.method, descriptor.path, **kwargs) as response:
            if response.status_code >= 400:
                await response.aread()
                return ResponseDescriptor(
                    status=response.status_code,
                    headers=dict(response.headers),
                    body=parse_body(response),
                    elapsed=time.perf_counter() - start,
                    method=descriptor.method,
                    path=descriptor.path,
                )

            async for chunk in response.aiter_bytes(sink.chunk_size):
                await sink.write(chunk)
            transferred = await sink.finish()

            return ResponseDescriptor(
                status=response.status_code,
                headers=dict(response.headers),
                body=None,
                elapsed=time.perf_counter() - start,
                method=descriptor.method,
                path=descriptor.path,
                bytes_transferred=transferred,
            )

    def _build_request_kwargs(
        self,
        descriptor: RequestDescriptor,
        source: Optional[RewindableSource],
        timeout: float,
    ) -> Dict[str, Any]:
        headers = dict(descriptor.headers)
        kwargs: Dict[str, Any] = {
            "params": dict(descriptor.params) or None,
            "timeout": httpx.Timeout(timeout),
        }

        if descriptor.transfer is TransferMode.UPLOAD_STREAM:
            # httpx writes the multipart Content-Type with its boundary
            headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
            kwargs["data"] = {k: str(v) for k, v in (descriptor.body or {}).items()}
            if source is not None:
                kwargs["files"] = {source.field_name: source.as_file_field()}
        elif descriptor.body is not None:
            if isinstance(descriptor.body, (bytes, bytearray, str)):
                kwargs["content"] = descriptor.body
            else:
                kwargs["json"] = descriptor.body

        kwargs["headers"] = headers
        return kwargs


__all__ = [
    "HttpTransport",
    "parse_body",
]
