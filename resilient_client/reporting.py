"""
================================================================================
Request Reporting
================================================================================

Attaches every completed exchange to the Allure report and provides the
redaction helpers used by log events:
    - Request URL with query parameters
    - Request headers and body with secrets masked
    - cURL command for reproduction
    - Response status and (truncated) body

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import json
from contextlib import contextmanager, nullcontext
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Mapping, Optional
from urllib.parse import urlencode

import allure
from allure_commons.types import AttachmentType

from .descriptors import RequestDescriptor, ResponseDescriptor, TransferMode


# Maximum response length to include in Allure reports
MAX_RESPONSE_LENGTH = 3000

MASK = "***MASKED***"

SENSITIVE_HEADERS = frozenset(
    {"authorization", "x-api-key", "x-app-auth", "cookie", "set-cookie", "proxy-authorization"}
)

SENSITIVE_FIELD_MARKERS = (
    "password", "secret", "token", "api_key", "apikey", "authorization", "session",
)


def redact_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Mask sensitive header values before logging."""
    masked = {}
    for key, value in (headers or {}).items():
        if key.lower() in SENSITIVE_HEADERS:
            masked[key] = MASK
        else:
            masked[key] = value
    return masked


def redact_body(payload: Any) -> Any:
    """Recursively mask sensitive fields in request and response bodies."""
    if isinstance(payload, Mapping):
        redacted = {}
        for key, value in payload.items():
            if any(marker in str(key).lower() for marker in SENSITIVE_FIELD_MARKERS):
                redacted[key] = MASK
            else:
                redacted[key] = redact_body(value)
        return redacted
    if isinstance(payload, (list, tuple)):
        return [redact_body(item) for item in payload]
    return payload


def build_url(base_url: str, descriptor: RequestDescriptor) -> str:
    """Full URL of ``descriptor`` including its query string."""
    if descriptor.path.startswith(("http://", "https://")):
        full_url = descriptor.path
    else:
        full_url = f"{base_url.rstrip('/')}/{descriptor.path.lstrip('/')}"
    if descriptor.params:
        full_url = f"{full_url}?{urlencode(dict(descriptor.params), doseq=True)}"
    return full_url


def build_curl(
    method: str,
    url: str,
    headers: Mapping[str, Any],
    body: Any = None,
    upload: bool = False,
) -> str:
    """
    Build a copy-paste ready cURL command.

    Expects already-redacted headers and body.
    """
    parts = [f"curl -X {method}"]

    for key, value in headers.items():
        parts.append(f"-H '{key}: {value}'")

    if upload:
        for key, value in (body or {}).items():
            parts.append(f"-F '{key}={value}'")
        parts.append("-F 'file=@<stream>'")
    elif body is not None:
        body_json = json.dumps(body, ensure_ascii=False, default=str)
        parts.append(f"-d '{body_json}'")

    parts.append(f"'{url}'")
    return " \\\n  ".join(parts)


def _render_body(body: Any) -> str:
    if body is None:
        return "<empty>"
    if isinstance(body, (bytes, bytearray)):
        return f"<{len(body)} bytes>"
    if isinstance(body, str):
        return body
    return json.dumps(redact_body(body), ensure_ascii=False, indent=2, default=str)


_flat_reports: ContextVar[bool] = ContextVar("flat_reports", default=False)


@contextmanager
def flat_reporting() -> Iterator[None]:
    """
    Attach exchanges directly to the enclosing step instead of opening one step each.

    Allure keeps a single step stack per thread, so exchanges from tasks that
    interleave on one event loop would nest under each other. The flag lives
    in a ContextVar and only affects the task that sets it.
    """
    token = _flat_reports.set(True)
    try:
        yield
    finally:
        _flat_reports.reset(token)


class RequestReporter:
    """
    Writes request/response details to Allure.

    Attachments are observational: a failure to serialise a body never
    changes the outcome of the request being reported.
    """

    def __init__(self, base_url: str, enabled: bool = True) -> None:
        self.base_url = base_url
        self.enabled = enabled

    def report(
        self,
        descriptor: RequestDescriptor,
        response: Optional[ResponseDescriptor] = None,
        error: Optional[Exception] = None,
    ) -> None:
        """Attach one exchange (successful or failed) to the current report."""
        if not self.enabled:
            return

        full_url = build_url(self.base_url, descriptor)
        if response is not None:
            status_emoji = "✅" if response.ok else "❌"
            outcome = str(response.status)
        else:
            status_emoji = "❌"
            outcome = type(error).__name__ if error else "no response"
        step_title = f"{status_emoji} {descriptor.method} {descriptor.path} → {outcome}"

        safe_headers = redact_headers(descriptor.headers)
        safe_body = redact_body(descriptor.body)

        flat = _flat_reports.get()
        scope = nullcontext() if flat else allure.step(step_title)

        def attach(body: str, name: str, attachment_type: AttachmentType) -> None:
            label = f"{step_title} | {name}" if flat else name
            allure.attach(body, name=label, attachment_type=attachment_type)

        with scope:
            attach(full_url, name="🔗 Request URL", attachment_type=AttachmentType.TEXT)

            if safe_headers:
                attach(
                    json.dumps(safe_headers, ensure_ascii=False, indent=2),
                    name="📤 Request Headers",
                    attachment_type=AttachmentType.JSON,
                )

            if safe_body is not None:
                attach(
                    json.dumps(safe_body, ensure_ascii=False, indent=2, default=str),
                    name="📤 Request Body",
                    attachment_type=AttachmentType.JSON,
                )

            curl_cmd = build_curl(
                descriptor.method,
                full_url,
                safe_headers,
                safe_body,
                upload=descriptor.transfer is TransferMode.UPLOAD_STREAM,
            )
            attach(curl_cmd, name="🔧 cURL Command", attachment_type=AttachmentType.TEXT)

            if response is not None:
                attach(
                    f"{status_emoji} {response.status} ({response.elapsed_ms:.0f} ms, "
                    f"{response.attempts} attempt(s))",
                    name="📥 Response Status",
                    attachment_type=AttachmentType.TEXT,
                )
                content = _render_body(response.body)
                if descriptor.transfer is TransferMode.DOWNLOAD_STREAM:
                    content = f"<streamed {response.bytes_transferred} bytes to sink>"
                if len(content) > MAX_RESPONSE_LENGTH:
                    content = (
                        f"{content[:MAX_RESPONSE_LENGTH]}\n\n"
                        f"... [Truncated, full length: {len(content)} chars] ..."
                    )
                attach(content, name="📥 Response Body", attachment_type=AttachmentType.TEXT)
            elif error is not None:
                attach(str(error), name="💥 Error", attachment_type=AttachmentType.TEXT)


__all__ = [
    "RequestReporter",
    "flat_reporting",
    "redact_headers",
    "redact_body",
    "build_url",
    "build_curl",
    "MAX_RESPONSE_LENGTH",
]
