import pytest

from resilient_client import ConfigurationError, HttpError, RequestDescriptor, RetryController, RetryPolicy, TransportError, TransportErrorKind
from resilient_client.retry import RetryState, parse_retry_after

pytestmark = pytest.mark.retry


def test_backoff_doubles_per_attempt_and_is_capped():
    controller = RetryController(RetryPolicy(max_retries=5, base_delay=0.1, max_delay=0.5))

    delays = [controller.next_delay(attempt) for attempt in range(5)]

    assert delays == [pytest.approx(0.1), pytest.approx(0.2), pytest.approx(0.4), 0.5, 0.5]


def test_jitter_stays_within_fraction():
    controller = RetryController(RetryPolicy(base_delay=1.0, max_delay=10.0, jitter=0.5))
    for _ in range(20):
        assert 1.0 <= controller.next_delay(0) <= 1.5


@pytest.mark.parametrize(
    "error, retryable",
    [
        (HttpError(503), True),
        (HttpError(429), True),
        (HttpError(408), True),
        (HttpError(404), False),
        (HttpError(400), False),
        (TransportError(TransportErrorKind.TIMEOUT, "slow"), True),
        (TransportError(TransportErrorKind.CONNECTION_FAILED, "refused"), True),
        (TransportError(TransportErrorKind.PROTOCOL, "bad url"), False),
        (ValueError("bug"), False),
    ],
)
def test_classification(error, retryable):
    assert RetryController().is_retryable(error) is retryable


def test_should_retry_stops_at_bound():
    controller = RetryController(RetryPolicy(max_retries=2))
    error = HttpError(503)

    assert controller.should_retry(error, 0)
    assert controller.should_retry(error, 1)
    assert not controller.should_retry(error, 2)


def test_retry_after_overrides_backoff():
    controller = RetryController(RetryPolicy(base_delay=0.01, max_delay=5.0))

    assert controller.delay_for(HttpError(429, headers={"Retry-After": "2"}), 0) == 2.0
    assert controller.delay_for(HttpError(429, headers={"retry-after": "120"}), 0) == 5.0
    assert controller.delay_for(HttpError(503), 1) == pytest.approx(0.02)


def test_parse_retry_after_formats():
    assert parse_retry_after({"Retry-After": "3"}) == 3.0
    assert parse_retry_after({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}) == 0.0
    assert parse_retry_after({"Retry-After": "soon"}) is None
    assert parse_retry_after({}) is None


def test_retry_state_counts_sends():
    state = RetryState(RequestDescriptor("GET", "/x"))
    assert state.sends == 1

    state.record(HttpError(503), 0.1)
    state.record(HttpError(502), 0.2)
    exhausted = state.exhausted(HttpError(500))

    assert state.attempt == 2
    assert state.next_delay == 0.2
    assert exhausted.attempts == 3
    assert exhausted.last_error.status == 500


@pytest.mark.parametrize(
    "kwargs",
    [{"max_retries": -1}, {"base_delay": -0.1}, {"base_delay": 2.0, "max_delay": 1.0}, {"jitter": 1.5}],
)
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        RetryPolicy(**kwargs)
