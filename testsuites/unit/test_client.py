import json

import httpx
import pytest

from resilient_client import ApiClient, ApiKeyAuth, BearerAuth, ClientConfig, ConfigurationError, HttpError, RunContext

pytestmark = pytest.mark.integration


class AuthServer:
    """Fake API with login/logout/health and an endpoint echoing credentials."""

    def __init__(self, token="t-123"):
        self.token = token
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path
        if path == "/auth/login":
            return httpx.Response(200, json={"token": self.token, "user": {"id": 1}})
        if path == "/auth/logout":
            return httpx.Response(204)
        if path == "/health":
            return httpx.Response(200, json={"status": "healthy"})
        if path == "/bad-login":
            return httpx.Response(401, json={"error": "invalid credentials"})
        return httpx.Response(
            200,
            json={
                "authorization": request.headers.get("authorization"),
                "api_key": request.headers.get("x-api-key"),
                "trace": request.headers.get("x-trace"),
                "user_agent": request.headers.get("user-agent"),
            },
        )


@pytest.mark.asyncio
async def test_login_installs_bearer_token_and_logout_resets(make_client):
    server = AuthServer()

    async with make_client(server, auth=ApiKeyAuth("k-1")) as client:
        before = await client.get("/me")
        await client.login({"username": "qa", "password": "secret"})
        during = await client.get("/me")
        await client.logout()
        after = await client.get("/me")

    assert before.body["authorization"] is None
    assert before.body["api_key"] == "k-1"
    assert during.body["authorization"] == "Bearer t-123"
    assert during.body["api_key"] is None
    assert after.body["api_key"] == "k-1"
    assert after.body["authorization"] is None


@pytest.mark.asyncio
async def test_login_reads_nested_token_field(make_client):
    def handler(request):
        if request.url.path == "/auth/login":
            return httpx.Response(200, json={"data": {"access_token": "nested"}})
        return httpx.Response(200, json={"authorization": request.headers.get("authorization")})

    async with make_client(handler, token_field="data.access_token") as client:
        await client.login({"username": "qa"})
        response = await client.get("/me")

    assert response.body["authorization"] == "Bearer nested"


@pytest.mark.asyncio
async def test_failed_login_raises_and_keeps_credentials(make_client):
    server = AuthServer()

    async with make_client(server, login_path="/bad-login", auth=ApiKeyAuth("k-1")) as client:
        with pytest.raises(HttpError) as exc_info:
            await client.login({"username": "qa", "password": "wrong"})
        assert client.auth.current == ApiKeyAuth("k-1")

    assert exc_info.value.status == 401


@pytest.mark.asyncio
async def test_failed_logout_keeps_credentials(make_client):
    server = AuthServer()

    async with make_client(server, logout_path="/bad-login") as client:
        await client.login({"username": "qa", "password": "secret"})
        with pytest.raises(HttpError):
            await client.logout()
        still_logged_in = await client.get("/me")

    assert client.auth.current == BearerAuth("t-123")
    assert still_logged_in.body["authorization"] == "Bearer t-123"


@pytest.mark.asyncio
async def test_health_check(make_client):
    async with make_client(AuthServer()) as client:
        response = await client.health_check()
    assert response.body == {"status": "healthy"}


@pytest.mark.asyncio
async def test_default_and_custom_headers(make_client):
    server = AuthServer()

    async with make_client(server) as client:
        client.set_header("X-Trace", "abc")
        traced = await client.get("/me")
        client.remove_header("x-trace")
        plain = await client.get("/me", headers={"User-Agent": "custom/1.0"})

    assert traced.body["trace"] == "abc"
    assert traced.body["user_agent"] == "Automation-Framework/2.0.0"
    assert plain.body["trace"] is None
    assert plain.body["user_agent"] == "custom/1.0"


@pytest.mark.asyncio
async def test_set_auth_helpers(make_client):
    async with make_client(AuthServer()) as client:
        client.set_auth_token("manual")
        bearer = await client.get("/me")
        client.set_api_key("k-9")
        keyed = await client.get("/me")

    assert bearer.body["authorization"] == "Bearer manual"
    assert keyed.body["api_key"] == "k-9"


@pytest.mark.asyncio
async def test_verbs_send_bodies(make_client):
    seen = []

    def handler(request):
        seen.append((request.method, request.content))
        return httpx.Response(200, json={})

    async with make_client(handler) as client:
        await client.post("/items", {"a": 1})
        await client.put("/items/1", {"a": 2})
        await client.patch("/items/1", {"a": 3})
        await client.delete("/items/1")

    assert [method for method, _ in seen] == ["POST", "PUT", "PATCH", "DELETE"]
    assert json.loads(seen[2][1]) == {"a": 3}
    assert seen[3][1] == b""


@pytest.mark.asyncio
async def test_measure_latency_records_into_run_context(make_client):
    run = RunContext("latency").start()

    async with make_client(AuthServer(), run_context=run) as client:
        measurement = await client.measure_latency("GET", "/health")

    assert measurement.response.status == 200
    assert measurement.elapsed_ms >= 0
    assert measurement.timestamp
    assert run.latencies == [measurement]


@pytest.mark.asyncio
async def test_request_count_and_reset(make_client):
    async with make_client(AuthServer(), rate_limit=50) as client:
        for _ in range(3):
            await client.health_check()
        assert client.request_count == 3

        client.reset_rate_limit()
        assert client.request_count == 0


def test_from_config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("API_BASE_URL", raising=False)
    config_path = tmp_path / "config.yaml"
    config_path.write_text("api:\n  base_url: http://from-file\n  rate_limit: 5\n", encoding="utf-8")

    client = ApiClient.from_config_file(config_path)

    assert client.config.base_url == "http://from-file"
    assert client.limiter.budget == 5


def test_backoff_base_above_default_cap_raises_the_cap():
    client = ApiClient(ClientConfig(backoff_base=60))

    assert client.retry.policy.base_delay == 60
    assert client.retry.policy.max_delay == 60


def test_conflicting_retry_options_raise_configuration_error():
    with pytest.raises(ConfigurationError):
        ApiClient(ClientConfig(max_retries=-1))
