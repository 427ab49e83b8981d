"""Bounded retry and polling helpers for external calls.

Retries go through tenacity with an exponential wait; polling suspends with
``asyncio.sleep``. Both stay cancellable, and the orchestrator wraps each
stage in ``asyncio.wait_for`` to enforce its budget.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Iterator, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.telemetry import increment_retry

from .errors import TransientExternalError

if TYPE_CHECKING:
    from .types import ExternalJobState

logger = logging.getLogger("app.pipelines.minutes")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient failures of a single call."""

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 20.0

    def wait(self) -> wait_exponential:
        return wait_exponential(multiplier=self.base_delay, max=self.max_delay)


@dataclass(frozen=True)
class PollPolicy:
    """Interval schedule between status queries of a running external job."""

    base_delay: float = 5.0
    max_interval: float = 60.0

    def intervals(self) -> Iterator[float]:
        delay = self.base_delay
        while True:
            yield min(delay, self.max_interval)
            delay = min(delay * 2, self.max_interval)


async def call_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
) -> T:
    """Await ``func`` and retry transient failures according to ``policy``.

    Permanent failures propagate on the first attempt. Once the attempt budget
    is spent the last transient error is re-raised with the attempt count.
    """

    def log_retry(state: RetryCallState) -> None:
        logger.warning(
            "Fallo transitorio operation=%s intento=%s/%s reintento_en=%.2fs: %s",
            operation,
            state.attempt_number,
            policy.max_attempts,
            state.next_action.sleep if state.next_action else 0.0,
            state.outcome.exception() if state.outcome else None,
        )
        increment_retry(operation)

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=policy.wait(),
            retry=retry_if_exception_type(TransientExternalError),
            before_sleep=log_retry,
        ):
            with attempt:
                return await func()
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        raise TransientExternalError(
            f"{operation} gave up after {policy.max_attempts} attempts: {last_error}"
        ) from last_error


async def poll_until_settled(
    operation: str,
    describe: Callable[[str], Awaitable["ExternalJobState"]],
    initial: "ExternalJobState",
    *,
    poll: PollPolicy,
    retry: RetryPolicy,
) -> "ExternalJobState":
    """Query ``describe`` with growing pauses until the external job settles."""

    state = initial
    intervals = poll.intervals()
    polls = 0
    while not state.settled:
        await asyncio.sleep(next(intervals))
        polls += 1
        handle = state.handle
        state = await call_with_retry(operation, lambda: describe(handle), retry)
        logger.debug("Sondeo operation=%s handle=%s n=%s estado=%s", operation, handle, polls, state.state)
    return state


__all__ = ["RetryPolicy", "PollPolicy", "call_with_retry", "poll_until_settled"]
