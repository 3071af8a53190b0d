"""
Repository-level pytest configuration.

Provides safe environment defaults and the session-wide RunContext that
collects scenario outcomes and latency samples for the whole run.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator

import pytest

from resilient_client import RunContext, init_logger


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return repo root path."""
    return Path(__file__).parent


@pytest.fixture(scope="session", autouse=True)
def _safe_env_defaults(tmp_path_factory) -> Generator[None, None, None]:
    """
    Set placeholder environment defaults if not already provided by the user/CI.

    Log files go to a temporary directory unless LOG_FILE_PATH is set.
    """
    defaults = {
        "API_BASE_URL": "http://localhost:8000",
        "LOG_LEVEL": "DEBUG",
        "LOG_FILE_PATH": str(tmp_path_factory.mktemp("logs")),
    }

    for k, v in defaults.items():
        os.environ.setdefault(k, v)

    init_logger()
    yield


@pytest.fixture(scope="session")
def run_context() -> Generator[RunContext, None, None]:
    """Statistics for the whole test session."""
    with RunContext("pytest-session") as context:
        yield context
