"""
================================================================================
Test Suite Pytest Configuration
================================================================================

Registers the project's markers and tags tests by directory.

================================================================================
"""

import pytest


def pytest_configure(config):
    """Configure pytest with project-wide custom markers."""

    # Test type markers
    config.addinivalue_line(
        "markers", "unit: Fast tests against fake transports and clocks"
    )
    config.addinivalue_line(
        "markers", "integration: Tests that exercise several components together"
    )

    # Feature markers
    config.addinivalue_line(
        "markers", "auth: Tests related to authentication"
    )
    config.addinivalue_line(
        "markers", "rate_limit: Tests related to request admission"
    )
    config.addinivalue_line(
        "markers", "retry: Tests related to retry and backoff"
    )
    config.addinivalue_line(
        "markers", "transfer: Tests related to uploads and downloads"
    )


def pytest_collection_modifyitems(config, items):
    """Auto-add the 'unit' marker to tests in the unit directory."""
    for item in items:
        if "unit" in item.nodeid.split("/"):
            item.add_marker(pytest.mark.unit)


def pytest_report_header(config):
    """Add custom header to pytest output."""
    return [
        "",
        "=" * 60,
        "Resilient API Client Test Suite",
        "=" * 60,
        "",
    ]
