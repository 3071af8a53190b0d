"""
Test suites package.

Kept importable so IDEs and CI jobs can address suites by module path.
Unit tests run against httpx.MockTransport fake servers; no network needed.
"""
