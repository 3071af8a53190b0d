import pytest

from resilient_client import ApiClientError, LatencyMeasurement, ResponseDescriptor, RunContext


def _measurement(ms):
    return LatencyMeasurement(ResponseDescriptor(status=200), ms)


def test_counts_and_summary():
    with RunContext("smoke") as run:
        run.record_scenario("login", passed=True)
        run.record_scenario("create user", passed=False, duration=0.4)
        run.record_scenario("health", passed=True)
        run.record_latency(_measurement(100.0))
        run.record_latency(_measurement(300.0))

    summary = run.summary()
    assert (run.total, run.passed, run.failed) == (3, 2, 1)
    assert run.average_latency_ms == 200.0
    assert summary["name"] == "smoke"
    assert summary["latency_samples"] == 2
    assert summary["duration_seconds"] >= 0


def test_records_after_close_are_rejected():
    run = RunContext().start()
    run.close()

    with pytest.raises(ApiClientError):
        run.record_scenario("late", passed=True)
    with pytest.raises(ApiClientError):
        run.record_latency(_measurement(1.0))


def test_runs_are_independent():
    first, second = RunContext("a"), RunContext("b")
    first.record_scenario("x", passed=True)

    assert first.total == 1
    assert second.total == 0
    assert second.average_latency_ms == 0.0


def test_session_fixture_collects_records(run_context):
    before = run_context.total
    run_context.record_scenario("session fixture available", passed=True)

    assert run_context.active
    assert run_context.total == before + 1
