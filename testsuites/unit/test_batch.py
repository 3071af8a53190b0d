import asyncio
from datetime import date

import httpx
import pytest

from resilient_client import Cancelled, HttpError, RequestBuildError, RequestDescriptor, RetryExhausted

pytestmark = pytest.mark.integration


def _numbered_server(fail_on=(), status=404):
    seen = []

    def handler(request):
        number = int(request.url.path.rsplit("/", 1)[-1])
        seen.append(number)
        if number in fail_on:
            return httpx.Response(status, json={"error": number})
        return httpx.Response(200, json={"number": number})

    handler.seen = seen
    return handler


@pytest.mark.asyncio
async def test_batch_preserves_order_and_captures_failures(make_client):
    server = _numbered_server(fail_on={2})
    descriptors = [RequestDescriptor("GET", f"/items/{i}") for i in range(5)]

    async with make_client(server) as client:
        result = await client.run_batch(descriptors)

    assert result.total == 5
    assert result.succeeded == 4
    assert result.failed == 1
    assert [item.index for item in result] == [0, 1, 2, 3, 4]
    assert [r.body["number"] for r in result.successes()] == [0, 1, 3, 4]
    assert isinstance(result[2].error, HttpError)
    assert result[2].response is None
    assert server.seen == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_concurrent_batch_preserves_order(make_client):
    server = _numbered_server(fail_on={1, 6}, status=503)
    descriptors = [RequestDescriptor("GET", f"/items/{i}") for i in range(8)]

    async with make_client(server, max_retries=1) as client:
        result = await client.run_batch(descriptors, concurrency=3)

    assert len(result) == 8
    assert [item.descriptor.path for item in result] == [f"/items/{i}" for i in range(8)]
    assert [i for i, item in enumerate(result) if not item.ok] == [1, 6]
    assert all(isinstance(e, RetryExhausted) for e in result.errors())
    assert sorted(server.seen) == sorted(list(range(8)) + [1, 6])


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrency", [1, 3])
async def test_unencodable_body_fails_only_its_item(make_client, concurrency):
    server = _numbered_server()
    descriptors = [
        RequestDescriptor("GET", "/items/0"),
        RequestDescriptor("POST", "/items/1", {"when": date(2024, 1, 1)}),
        RequestDescriptor("GET", "/items/2"),
    ]

    async with make_client(server) as client:
        result = await client.run_batch(descriptors, concurrency=concurrency)

    assert len(result) == 3
    assert [item.ok for item in result] == [True, False, True]
    assert isinstance(result[1].error, RequestBuildError)
    assert isinstance(result[1].error.cause, TypeError)
    assert sorted(server.seen) == [0, 2]


@pytest.mark.asyncio
async def test_batch_accepts_request_mappings(make_client):
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.content, request.headers.get("user-agent")))
        return httpx.Response(201, json={"created": True})

    async with make_client(handler) as client:
        result = await client.run_batch(
            [
                {"method": "POST", "endpoint": "/users", "data": {"name": "a"}},
                {"method": "delete", "path": "/users/1", "options": {"params": {"hard": "1"}}},
            ]
        )

    assert result.succeeded == 2
    assert [s[:2] for s in seen] == [("POST", "/users"), ("DELETE", "/users/1")]
    assert all(s[3] == "Automation-Framework/2.0.0" for s in seen)


@pytest.mark.asyncio
async def test_batch_shares_rate_budget(make_client):
    server = _numbered_server()
    descriptors = [RequestDescriptor("GET", f"/items/{i}") for i in range(4)]

    async with make_client(server, rate_limit=10) as client:
        await client.run_batch(descriptors, concurrency=4)
        assert client.request_count == 4


@pytest.mark.asyncio
async def test_cancelled_batch_records_every_item(make_client):
    cancel = asyncio.Event()
    cancel.set()
    descriptors = [RequestDescriptor("GET", f"/items/{i}") for i in range(3)]

    server = _numbered_server()

    async with make_client(server) as client:
        result = await client.run_batch(descriptors, cancel=cancel)

    assert result.total == 3
    assert result.failed == 3
    assert all(isinstance(e, Cancelled) for e in result.errors())
    assert server.seen == []


@pytest.mark.asyncio
async def test_invalid_concurrency(make_client):
    async with make_client(_numbered_server()) as client:
        with pytest.raises(ValueError):
            await client.run_batch([], concurrency=0)


@pytest.mark.asyncio
async def test_empty_batch(make_client):
    async with make_client(_numbered_server()) as client:
        result = await client.run_batch([])

    assert result.total == 0
    assert result.successes() == []
