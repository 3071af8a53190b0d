"""Shared fixtures for unit tests: fake clock, recorded backoff, fake servers."""

from __future__ import annotations

import asyncio
from typing import Callable, List

import httpx
import pytest

from resilient_client import ApiClient, ClientConfig


class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class RecordingSleep:
    """Backoff sleep that records delays without waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_client(recording_sleep) -> Callable[..., ApiClient]:
    """
    Build an ApiClient wired to an httpx.MockTransport handler.

    Keyword arguments override ClientConfig fields; retries default to a
    small backoff so recorded delays stay readable.
    """

    def factory(handler, *, sleep=None, run_context=None, **overrides) -> ApiClient:
        options = {
            "base_url": "http://api.test",
            "max_retries": 3,
            "backoff_base": 0.01,
            "backoff_cap": 1.0,
        }
        options.update(overrides)
        return ApiClient(
            ClientConfig(**options),
            transport=httpx.MockTransport(handler),
            run_context=run_context,
            sleep=sleep or recording_sleep,
        )

    return factory
