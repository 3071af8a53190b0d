"""
================================================================================
Configuration Loader
================================================================================

YAML-based configuration management with environment variable override support,
plus the typed ClientConfig consumed by ApiClient.

Features:
    - Base YAML file merged with an optional per-environment overlay
      (config/{ENV}.yaml)
    - Environment variable override (API_RATE_LIMIT overrides api.rate_limit)
    - Dot notation path access with defaults
    - ClientConfig: named, independently defaulted client options

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from loguru import logger

from .auth import AuthConfig, NoAuth, auth_from_mapping
from .errors import ConfigurationError


# Default configuration file paths
DEFAULT_CONFIG_DIR = Path(__file__).parent.parent / "config"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"

DEFAULT_HEADERS: Mapping[str, str] = {
    "Content-Type": "application/json",
    "User-Agent": "Automation-Framework/2.0.0",
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class ConfigLoader:
    """
    Layered YAML configuration.

    Lookup order for ``get("api.base_url")``:
        1. $API_BASE_URL
        2. config/<ENV>.yaml overlay, when ENV (or ENVIRONMENT) is set
        3. the base file, config/config.yaml unless ``config_path`` is given
        4. the caller's default

    Usage:
        >>> loader = ConfigLoader()
        >>> loader.get("api.rate_limit", 100)
        100
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        environment: Optional[str] = None,
    ) -> None:
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._environment = environment or os.getenv("ENVIRONMENT", os.getenv("ENV"))
        self._config: Dict[str, Any] = {}
        self._load_config()

    @property
    def path(self) -> Path:
        return self._config_path

    def _load_config(self) -> None:
        """Load the base file, then merge the environment overlay over it."""
        self._config = self._read_yaml(self._config_path, required=True)

        if self._environment:
            overlay_path = self._config_path.parent / f"{self._environment}.yaml"
            overlay = self._read_yaml(overlay_path, required=False)
            if overlay:
                self._config = _deep_merge(self._config, overlay)
                logger.debug(f"Merged environment config: {overlay_path}")

    def _read_yaml(self, path: Path, required: bool) -> Dict[str, Any]:
        if not path.exists():
            if required:
                logger.warning(
                    f"Configuration file not found: {path}. "
                    f"Using defaults and environment variables only."
                )
            return {}

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file {path}: {e}"
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file {path} must contain a mapping, got {type(data).__name__}"
            )
        logger.debug(f"Loaded configuration from: {path}")
        return data

    def get(self, key: str, default: Any = None) -> Any:
        """
        Value at dot path ``key``: environment variable first, then file, then ``default``.

        ``api.rate_limit`` is looked up in the environment as ``API_RATE_LIMIT``
        and coerced to the type of ``default``.
        """
        raw = os.environ.get(key.upper().replace(".", "_"))
        if raw is not None:
            return _coerce(raw, default)

        node: Any = self._config
        for part in key.split("."):
            node = node.get(part) if isinstance(node, dict) else None
            if node is None:
                return default
        return node

    def get_section(self, section: str) -> Dict[str, Any]:
        """Copy of a top-level section; ``{}`` when absent or not a mapping."""
        value = self._config.get(section)
        return dict(value) if isinstance(value, dict) else {}

    def reload(self) -> None:
        self._load_config()
        logger.info(f"Configuration reloaded from: {self._config_path}")


_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})


def _coerce(raw: str, reference: Any) -> Any:
    """Convert an environment string to the type of ``reference``; unparseable numbers stay strings."""
    if isinstance(reference, bool):
        return raw.strip().lower() in _TRUE_STRINGS
    for number_type in (int, float):
        if isinstance(reference, number_type):
            try:
                return number_type(raw)
            except ValueError:
                return raw
    return raw


@dataclass(frozen=True)
class ClientConfig:
    """
    Construction options for ApiClient.

    Attributes:
        base_url: Address of the service under test
        timeout: Per-attempt timeout in seconds
        default_headers: Headers sent with every request
        rate_limit: Requests admitted per rate_interval
        rate_interval: Sliding window width in seconds
        max_retries: Retries after the first attempt
        backoff_base: First backoff delay in seconds (doubles per attempt)
        backoff_cap: Upper bound for any single backoff delay (never below backoff_base)
        backoff_jitter: Random extra delay as a fraction of the backoff
        deadline: Overall time budget per logical request (None = unbounded)
        follow_redirects: Follow 3xx responses
        verify_ssl: Verify TLS certificates
        auth: Initial authentication strategy
        login_path / logout_path / health_path: Endpoints for the helpers
        token_field: Dot path of the token inside the login response
    """

    base_url: str = "http://localhost:8000"
    timeout: float = 30.0
    default_headers: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_HEADERS))
    rate_limit: int = 100
    rate_interval: float = 1.0
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_cap: float = 30.0
    backoff_jitter: float = 0.0
    deadline: Optional[float] = None
    follow_redirects: bool = True
    verify_ssl: bool = True
    auth: AuthConfig = field(default_factory=NoAuth)
    login_path: str = "/auth/login"
    logout_path: str = "/auth/logout"
    health_path: str = "/health"
    token_field: str = "token"

    @classmethod
    def from_loader(cls, loader: ConfigLoader) -> "ClientConfig":
        """
        Build a ClientConfig from the ``api`` and ``auth`` sections.

        Every key is optional; missing keys keep the dataclass default.
        """
        defaults = cls()
        headers = dict(DEFAULT_HEADERS)
        headers.update(loader.get("api.headers", {}) or {})

        deadline = loader.get("api.deadline")
        auth_section = loader.get_section("auth")
        auth = auth_from_mapping(auth_section) if auth_section.get("type") else defaults.auth

        return cls(
            base_url=loader.get("api.base_url", defaults.base_url),
            timeout=float(loader.get("api.timeout", defaults.timeout)),
            default_headers=headers,
            rate_limit=int(loader.get("api.rate_limit", defaults.rate_limit)),
            rate_interval=float(loader.get("api.rate_interval", defaults.rate_interval)),
            max_retries=int(loader.get("api.retry_attempts", defaults.max_retries)),
            backoff_base=float(loader.get("api.retry_backoff", defaults.backoff_base)),
            backoff_cap=float(loader.get("api.retry_max_wait", defaults.backoff_cap)),
            backoff_jitter=float(loader.get("api.retry_jitter", defaults.backoff_jitter)),
            deadline=float(deadline) if deadline is not None else None,
            follow_redirects=bool(loader.get("api.follow_redirects", defaults.follow_redirects)),
            verify_ssl=bool(loader.get("api.verify_ssl", defaults.verify_ssl)),
            auth=auth,
            login_path=loader.get("api.login_path", defaults.login_path),
            logout_path=loader.get("api.logout_path", defaults.logout_path),
            health_path=loader.get("api.health_path", defaults.health_path),
            token_field=loader.get("auth.token_field", defaults.token_field),
        )


__all__ = [
    "ConfigLoader",
    "ClientConfig",
    "DEFAULT_HEADERS",
]
