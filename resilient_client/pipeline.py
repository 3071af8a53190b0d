"""
================================================================================
Request Pipeline
================================================================================

Runs one logical request through Auth -> Rate Limiter -> Transport -> Retry ->
Validator as an explicit state machine:

    PENDING -> AUTHORIZING -> ADMITTING -> SENDING -+-> SUCCEEDED
                   ^              ^                 +-> VALIDATING -> SUCCEEDED | FAILED
                   |              |                 +-> FAILED
                   +--------------+---- RETRYING <--+

A retried request is a fresh send: it is decorated with the credentials in
force at that moment and re-admitted by the rate limiter. SUCCEEDED and
FAILED are terminal.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import replace
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from loguru import logger

from .auth import AuthManager
from .cancellation import run_cancellable
from .descriptors import RequestDescriptor, ResponseDescriptor
from .errors import (
    ApiClientError,
    Cancelled,
    DeadlineExceeded,
    HttpError,
    RequestBuildError,
    TransportError,
    ValidationError,
)
from .rate_limiter import SlidingWindowRateLimiter
from .reporting import RequestReporter, redact_headers
from .response_validator import ResponseValidator
from .retry import RetryController, RetryState
from .transfer import RewindableSource, StreamSink
from .transport import HttpTransport


class PipelineState(Enum):
    """Lifecycle states of one logical request."""
    PENDING = "pending"
    AUTHORIZING = "authorizing"
    ADMITTING = "admitting"
    SENDING = "sending"
    RETRYING = "retrying"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    PipelineState.PENDING: frozenset({PipelineState.AUTHORIZING, PipelineState.FAILED}),
    PipelineState.AUTHORIZING: frozenset({PipelineState.ADMITTING, PipelineState.FAILED}),
    PipelineState.ADMITTING: frozenset({PipelineState.SENDING, PipelineState.FAILED}),
    PipelineState.SENDING: frozenset({
        PipelineState.SUCCEEDED,
        PipelineState.RETRYING,
        PipelineState.VALIDATING,
        PipelineState.FAILED,
    }),
    PipelineState.RETRYING: frozenset({
        PipelineState.AUTHORIZING,
        PipelineState.ADMITTING,
        PipelineState.FAILED,
    }),
    PipelineState.VALIDATING: frozenset({PipelineState.SUCCEEDED, PipelineState.FAILED}),
    PipelineState.SUCCEEDED: frozenset(),
    PipelineState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({PipelineState.SUCCEEDED, PipelineState.FAILED})

_call_ids = itertools.count(1)


class RequestCall:
    """
    State of one logical request as it moves through the pipeline.

    Attributes:
        descriptor: The caller's request (never modified)
        state: Current PipelineState
        history: Every state visited, in order
        retry: Attempt bookkeeping
    """

    def __init__(self, descriptor: RequestDescriptor) -> None:
        self.call_id = next(_call_ids)
        self.descriptor = descriptor
        self.state = PipelineState.PENDING
        self.history: List[PipelineState] = [PipelineState.PENDING]
        self.retry = RetryState(descriptor)
        self.response: Optional[ResponseDescriptor] = None
        self.error: Optional[BaseException] = None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def label(self) -> str:
        return f"#{self.call_id} {self.descriptor.method} {self.descriptor.path}"

    def transition(self, new_state: PipelineState) -> None:
        """
        Move to ``new_state``.

        Raises:
            RuntimeError: If the transition is not allowed from the current state
        """
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal pipeline transition {self.state.value} -> {new_state.value} "
                f"for {self.label}"
            )
        logger.debug(f"[{self.label}] {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: BaseException) -> None:
        self.error = error
        if not self.terminal:
            self.transition(PipelineState.FAILED)


class RequestPipeline:
    """
    Composes the client components for a single logical call.

    Args:
        transport: Network adapter
        auth: Holder of the current credentials
        limiter: Shared rate limiter
        retry: Failure classification and backoff
        validator: Response schema checks
        reporter: Allure reporter (optional)
        deadline: Default overall time budget per call in seconds
        sleep: Coroutine used for backoff waits
        clock: Monotonic time source for deadlines
    """

    def __init__(
        self,
        transport: HttpTransport,
        auth: AuthManager,
        limiter: SlidingWindowRateLimiter,
        retry: RetryController,
        validator: ResponseValidator,
        reporter: Optional[RequestReporter] = None,
        *,
        deadline: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.auth = auth
        self.limiter = limiter
        self.retry = retry
        self.validator = validator
        self.reporter = reporter
        self.deadline = deadline
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self,
        descriptor: RequestDescriptor,
        *,
        cancel: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
        source: Optional[RewindableSource] = None,
        sink: Optional[StreamSink] = None,
    ) -> ResponseDescriptor:
        """
        Run ``descriptor`` to a terminal state.

        Args:
            descriptor: Request to perform
            cancel: Event that aborts rate-limit waits, sends and backoff
            deadline: Overall budget in seconds (overrides the default)
            source: Upload content, rewound before every send
            sink: Download destination, reset before every resend

        Returns:
            The (validated) response

        Raises:
            HttpError: Non-retryable error status
            ValidationError: Body violates descriptor.schema
            RetryExhausted: Retryable failures outlasted the retry bound
            DeadlineExceeded: Overall deadline ran out
            Cancelled: ``cancel`` was set
            NonRetryableStream: A resend needed a stream that cannot rewind
            RequestBuildError: The request could not be encoded or sent
        """
        call = RequestCall(descriptor)
        budget = deadline if deadline is not None else self.deadline
        expires_at = self._clock() + budget if budget is not None else None

        try:
            response = await self._run(call, cancel, budget, expires_at, source, sink)
        except ApiClientError as e:
            call.fail(e)
            logger.error(f"✖ {call.label} failed: {e}")
            raise
        except asyncio.CancelledError as e:
            call.fail(e)
            raise
        except Exception as e:
            error = RequestBuildError(descriptor, e)
            call.fail(error)
            logger.exception(f"✖ {call.label} failed unexpectedly: {e}")
            raise error from e

        call.response = response
        return response

    async def _run(
        self,
        call: RequestCall,
        cancel: Optional[asyncio.Event],
        budget: Optional[float],
        expires_at: Optional[float],
        source: Optional[RewindableSource],
        sink: Optional[StreamSink],
    ) -> ResponseDescriptor:
        descriptor = call.descriptor

        while True:
            call.transition(PipelineState.AUTHORIZING)
            attempt_descriptor = self.auth.apply(descriptor)

            call.transition(PipelineState.ADMITTING)
            await self._admit(call, cancel, budget, expires_at)

            call.transition(PipelineState.SENDING)
            if source is not None:
                source.rewind()
            if sink is not None:
                sink.reset()

            logger.info(
                f"→ {call.label} (attempt {call.retry.sends}/{self.retry.max_retries + 1}) "
                f"headers={redact_headers(attempt_descriptor.headers)}"
            )
            try:
                response = await run_cancellable(
                    self.transport.send(
                        attempt_descriptor,
                        source=source,
                        sink=sink,
                        timeout=self._attempt_timeout(descriptor, expires_at, budget, call),
                    ),
                    cancel,
                    PipelineState.SENDING,
                )
                if response.status >= 400:
                    self._report(attempt_descriptor, response=response)
                    raise HttpError(response.status, response.body, response.headers, attempt_descriptor)
            except (TransportError, HttpError) as error:
                if not isinstance(error, HttpError):
                    self._report(attempt_descriptor, error=error)
                await self._schedule_retry(call, error, cancel, budget, expires_at)
                continue

            response = replace(response, attempts=call.retry.sends)
            self._report(attempt_descriptor, response=response)
            logger.info(
                f"← {call.label} {response.status} in {response.elapsed_ms:.0f} ms "
                f"after {response.attempts} attempt(s)"
            )

            if descriptor.schema is not None:
                call.transition(PipelineState.VALIDATING)
                try:
                    self.validator.validate(response, descriptor.schema)
                except ValidationError as e:
                    logger.warning(f"⚠ {call.label} validation failure at '{e.field_path}': {e}")
                    raise

            call.transition(PipelineState.SUCCEEDED)
            return response

    async def _admit(
        self,
        call: RequestCall,
        cancel: Optional[asyncio.Event],
        budget: Optional[float],
        expires_at: Optional[float],
    ) -> None:
        remaining = self._remaining(expires_at)
        if remaining is not None and remaining <= 0:
            raise DeadlineExceeded(budget, call.retry.last_error)

        try:
            if remaining is None:
                await self.limiter.admit(cancel)
            else:
                await asyncio.wait_for(self.limiter.admit(cancel), timeout=remaining)
        except Cancelled:
            raise Cancelled(call.state) from None
        except asyncio.TimeoutError:
            raise DeadlineExceeded(budget, call.retry.last_error) from None

    async def _schedule_retry(
        self,
        call: RequestCall,
        error: ApiClientError,
        cancel: Optional[asyncio.Event],
        budget: Optional[float],
        expires_at: Optional[float],
    ) -> None:
        """Approve and wait out a retry, or raise the terminal error."""
        if not self.retry.should_retry(error, call.retry.attempt):
            if self.retry.is_retryable(error):
                raise call.retry.exhausted(error)
            raise error

        delay = self.retry.delay_for(error, call.retry.attempt)
        remaining = self._remaining(expires_at)
        if remaining is not None and delay >= remaining:
            raise DeadlineExceeded(budget, error)

        call.retry.record(error, delay)
        call.transition(PipelineState.RETRYING)
        logger.warning(
            f"↻ {call.label} retry {call.retry.attempt}/{self.retry.max_retries} "
            f"scheduled in {delay:.2f}s after: {error}"
        )
        await run_cancellable(self._sleep(delay), cancel, PipelineState.RETRYING)

    def _attempt_timeout(
        self,
        descriptor: RequestDescriptor,
        expires_at: Optional[float],
        budget: Optional[float],
        call: RequestCall,
    ) -> Optional[float]:
        """Per-attempt timeout, shortened to the time left before the deadline."""
        timeout = descriptor.timeout if descriptor.timeout is not None else self.transport.config.timeout
        remaining = self._remaining(expires_at)
        if remaining is None:
            return timeout
        if remaining <= 0:
            raise DeadlineExceeded(budget, call.retry.last_error)
        return min(timeout, remaining)

    def _remaining(self, expires_at: Optional[float]) -> Optional[float]:
        if expires_at is None:
            return None
        return expires_at - self._clock()

    def _report(self, descriptor: RequestDescriptor, response=None, error=None) -> None:
        if self.reporter is not None:
            self.reporter.report(descriptor, response=response, error=error)


__all__ = [
    "PipelineState",
    "TRANSITIONS",
    "RequestCall",
    "RequestPipeline",
]
