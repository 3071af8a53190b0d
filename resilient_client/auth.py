"""
================================================================================
Authentication Strategies
================================================================================

Attaches credentials to outgoing requests according to a configured scheme:
    - none:    no credentials
    - bearer:  Authorization: Bearer <token>
    - basic:   Authorization: Basic base64(user:pass)
    - api-key: <header name>: <key>   (X-API-Key by default)
    - custom:  arbitrary header mapping

AuthManager holds the strategy for one client. Replacing it (e.g. after a
login call) affects requests decorated afterwards; requests already decorated
keep the headers they were given.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from loguru import logger

from .descriptors import RequestDescriptor
from .errors import ConfigurationError


DEFAULT_API_KEY_HEADER = "X-API-Key"


@dataclass(frozen=True)
class NoAuth:
    """No credentials."""

    def headers(self) -> Dict[str, str]:
        return {}


@dataclass(frozen=True)
class BearerAuth:
    token: str

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str

    def headers(self) -> Dict[str, str]:
        raw = f"{self.username}:{self.password}".encode("utf-8")
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}


@dataclass(frozen=True)
class ApiKeyAuth:
    key: str
    header_name: str = DEFAULT_API_KEY_HEADER

    def headers(self) -> Dict[str, str]:
        return {self.header_name: self.key}


@dataclass(frozen=True)
class CustomAuth:
    headers_map: Mapping[str, str] = field(default_factory=dict)

    def headers(self) -> Dict[str, str]:
        return dict(self.headers_map)


AuthConfig = Union[NoAuth, BearerAuth, BasicAuth, ApiKeyAuth, CustomAuth]


def decorate(descriptor: RequestDescriptor, config: AuthConfig) -> RequestDescriptor:
    """
    Return a new descriptor with the credential headers of ``config`` merged in.

    Credential headers override same-named request headers. The input
    descriptor is left untouched.
    """
    return descriptor.with_headers(config.headers())


def auth_from_mapping(data: Mapping[str, Any]) -> AuthConfig:
    """
    Build an AuthConfig from a configuration mapping.

    Examples:
        {"type": "bearer", "token": "abc"}
        {"type": "basic", "username": "u", "password": "p"}
        {"type": "api-key", "key": "k", "header": "X-Service-Key"}
        {"type": "custom", "headers": {"X-Tenant": "t1"}}

    Raises:
        ConfigurationError: Unknown type or missing fields
    """
    auth_type = str(data.get("type", "none")).lower().replace("_", "-")
    try:
        if auth_type == "none":
            return NoAuth()
        if auth_type == "bearer":
            return BearerAuth(token=data["token"])
        if auth_type == "basic":
            return BasicAuth(username=data["username"], password=data["password"])
        if auth_type in ("api-key", "apikey"):
            return ApiKeyAuth(
                key=data["key"],
                header_name=data.get("header", DEFAULT_API_KEY_HEADER),
            )
        if auth_type == "custom":
            return CustomAuth(headers_map=dict(data["headers"]))
    except KeyError as e:
        raise ConfigurationError(f"Auth type '{auth_type}' requires field {e}") from e

    raise ConfigurationError(f"Unknown auth type: {data.get('type')!r}")


class AuthManager:
    """
    Holds the authentication strategy of one client instance.

    Reads return the current strategy object as a whole, and installs replace
    it with a single assignment, so a request never sees half of an update.

    Usage:
        >>> manager = AuthManager(ApiKeyAuth("k-1"))
        >>> decorated = manager.apply(descriptor)
        >>> manager.install(BearerAuth("t-123"))  # after login
    """

    def __init__(self, initial: Optional[AuthConfig] = None) -> None:
        self._initial: AuthConfig = initial if initial is not None else NoAuth()
        self._current: AuthConfig = self._initial

    @property
    def current(self) -> AuthConfig:
        """Snapshot of the strategy in force."""
        return self._current

    def install(self, config: AuthConfig) -> None:
        """Replace the strategy for requests decorated from now on."""
        self._current = config
        logger.debug(f"Authentication strategy set to {type(config).__name__}")

    def apply(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        """Decorate ``descriptor`` with the current credentials."""
        return decorate(descriptor, self._current)

    def reset(self) -> None:
        """Restore the strategy the manager was created with."""
        self._current = self._initial
        logger.debug(f"Authentication strategy reset to {type(self._initial).__name__}")


__all__ = [
    "AuthConfig",
    "NoAuth",
    "BearerAuth",
    "BasicAuth",
    "ApiKeyAuth",
    "CustomAuth",
    "AuthManager",
    "decorate",
    "auth_from_mapping",
]
