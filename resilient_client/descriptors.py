"""
================================================================================
Request / Response Descriptors
================================================================================

Immutable value objects that describe one request handed to the pipeline and
one response handed back to the caller.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

if TYPE_CHECKING:
    from .response_validator import ValidationSchema


class TransferMode(Enum):
    """How the request/response body travels."""
    NONE = "none"
    UPLOAD_STREAM = "upload-stream"
    DOWNLOAD_STREAM = "download-stream"


def merge_headers(*mappings: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Merge header mappings, later mappings overriding earlier ones.

    Header names compare case-insensitively; the casing of the winning
    entry is kept.
    """
    merged: Dict[str, str] = {}
    for mapping in mappings:
        if not mapping:
            continue
        for name, value in mapping.items():
            for existing in [k for k in merged if k.lower() == name.lower()]:
                del merged[existing]
            merged[name] = value
    return merged


@dataclass(frozen=True)
class RequestDescriptor:
    """
    One logical request.

    Attributes:
        method: HTTP verb, normalised to upper case
        path: URL path relative to the client's base URL (or absolute URL)
        body: JSON payload, or form metadata for uploads
        headers: Request headers (read-only)
        params: Query parameters (read-only, None values dropped)
        schema: Optional schema the response body must satisfy
        timeout: Per-attempt timeout override in seconds
        transfer: Streaming mode for the body
    """

    method: str
    path: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    schema: Optional["ValidationSchema"] = None
    timeout: Optional[float] = None
    transfer: TransferMode = TransferMode.NONE

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", MappingProxyType(merge_headers(self.headers)))
        params = {k: v for k, v in (self.params or {}).items() if v is not None}
        object.__setattr__(self, "params", MappingProxyType(params))

    def with_headers(self, headers: Optional[Mapping[str, str]]) -> "RequestDescriptor":
        """Return a copy with ``headers`` merged over the existing ones."""
        if not headers:
            return self
        return replace(self, headers=merge_headers(self.headers, headers))

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return None


@dataclass(frozen=True)
class ResponseDescriptor:
    """
    One response, owned by the caller that receives it.

    ``body`` holds parsed JSON, decoded text or raw bytes. Streamed downloads
    leave it as None and report ``bytes_transferred`` instead.
    """

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    elapsed: float = 0.0
    method: str = ""
    path: str = ""
    attempts: int = 1
    bytes_transferred: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed * 1000.0

    def json(self) -> Any:
        """Return the body as JSON, decoding text/bytes bodies if needed."""
        if isinstance(self.body, (bytes, bytearray)):
            return json.loads(self.body.decode("utf-8"))
        if isinstance(self.body, str):
            return json.loads(self.body)
        return self.body


@dataclass(frozen=True)
class LatencyMeasurement:
    """Result of a timed request."""

    response: ResponseDescriptor
    elapsed_ms: float
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


__all__ = [
    "TransferMode",
    "RequestDescriptor",
    "ResponseDescriptor",
    "LatencyMeasurement",
    "merge_headers",
]
