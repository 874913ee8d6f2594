"""Retry/backoff helpers for engine invocations."""

from __future__ import annotations

import asyncio
import logging as py_logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Protocol, TypeVar

from containercli.errors import CommandError, FailureKind, is_transient
from containercli.execution import CancelToken

T = TypeVar("T")
logger = py_logging.getLogger(__name__)

RetryPredicate = Callable[[CommandError], bool]


class BackoffStrategy(Protocol):
    def delay_for(self, attempt: int) -> float: ...


def _check_attempt(attempt: int) -> None:
    if attempt < 1:
        raise ValueError(f"attempt is 1-based, got {attempt}")


@dataclass(frozen=True)
class FixedBackoff:
    delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        _check_attempt(attempt)
        return self.delay


@dataclass(frozen=True)
class LinearBackoff:
    initial: float = 0.1
    increment: float = 0.1

    def delay_for(self, attempt: int) -> float:
        _check_attempt(attempt)
        return self.initial + self.increment * (attempt - 1)


@dataclass(frozen=True)
class ExponentialBackoff:
    initial: float = 0.1
    max: float = 10.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        _check_attempt(attempt)
        try:
            delay = self.initial * self.multiplier ** (attempt - 1)
        except OverflowError:
            return self.max
        return min(delay, self.max)


def retry_on_default(error: CommandError) -> bool:
    return error.kind.default_retryable


def retry_on_all(error: CommandError) -> bool:
    del error
    return True


def retry_on_timeout(error: CommandError) -> bool:
    return error.kind is FailureKind.TIMEOUT


def retry_on_transient(error: CommandError) -> bool:
    return is_transient(error)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff: BackoffStrategy = field(default_factory=ExponentialBackoff)
    retry_on: RetryPredicate = retry_on_default

    DEFAULT: ClassVar[RetryPolicy]
    NONE: ClassVar[RetryPolicy]

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


RetryPolicy.DEFAULT = RetryPolicy()
RetryPolicy.NONE = RetryPolicy(max_attempts=1)


class RetryPhase(str, Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RetryState:
    """Decision core shared by the blocking and asyncio retry loops."""

    def __init__(self, policy: RetryPolicy) -> None:
        self.policy = policy
        self.attempt = 1
        self.phase = RetryPhase.ATTEMPTING
        self._started = time.monotonic()

    def succeeded(self) -> None:
        self.phase = RetryPhase.SUCCEEDED

    def record_failure(self, error: CommandError) -> float:
        """Return the delay before the next attempt, or raise the terminal failure."""
        if error.kind is FailureKind.CANCELLED:
            # A cancelled attempt ends the whole loop, whatever the predicate says.
            logger.debug("Attempt %s was cancelled, not retrying", self.attempt)
            self.phase = RetryPhase.FAILED
            raise error
        if not self.policy.retry_on(error):
            logger.debug("Failure is not retryable kind=%s: %s", error.kind.value, error.message)
            self.phase = RetryPhase.FAILED
            raise error
        if self.attempt >= self.policy.max_attempts:
            logger.warning("All %s attempts exhausted: %s", self.policy.max_attempts, error.message)
            self.phase = RetryPhase.FAILED
            raise CommandError.retry_exhausted(self.attempt, error) from error
        delay = self.policy.backoff.delay_for(self.attempt)
        logger.debug(
            "Attempt %s failed, retrying in %.3fs kind=%s: %s",
            self.attempt,
            delay,
            error.kind.value,
            error.message,
        )
        self.phase = RetryPhase.BACKOFF
        return delay

    def cancelled(self, error: CommandError) -> CommandError:
        """Build the failure for a cancel request that arrived during backoff."""
        logger.info("Retry cancelled during backoff after attempt %s", self.attempt)
        self.phase = RetryPhase.FAILED
        return CommandError.cancelled(error.command, time.monotonic() - self._started)

    def next_attempt(self) -> None:
        self.attempt += 1
        self.phase = RetryPhase.ATTEMPTING


def _backoff(delay: float, cancel: CancelToken | None, sleep: Callable[[float], None] | None) -> bool:
    if sleep is not None:
        sleep(delay)
    elif cancel is not None:
        return cancel.wait(delay)
    else:
        time.sleep(delay)
    return cancel is not None and cancel.cancelled


async def _backoff_async(
    delay: float,
    cancel: CancelToken | None,
    sleep: Callable[[float], Awaitable[None]] | None,
) -> bool:
    if sleep is not None:
        await sleep(delay)
    elif cancel is not None:
        return await cancel.wait_async(delay)
    else:
        await asyncio.sleep(delay)
    return cancel is not None and cancel.cancelled


def run_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy = RetryPolicy.DEFAULT,
    sleep: Callable[[float], None] | None = None,
    cancel: CancelToken | None = None,
) -> T:
    """Call ``operation`` until it succeeds or ``policy`` gives up.

    The backoff wait returns as soon as ``cancel`` fires and the loop raises
    a ``CANCELLED`` failure without starting another attempt. An injected
    ``sleep`` replaces the wait; the token is still checked after it.
    """
    state = RetryState(policy)
    while True:
        try:
            result = operation()
        except CommandError as exc:
            delay = state.record_failure(exc)
            failure = exc
        else:
            state.succeeded()
            return result
        if _backoff(delay, cancel, sleep):
            raise state.cancelled(failure) from failure
        state.next_attempt()


async def run_with_retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy = RetryPolicy.DEFAULT,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    cancel: CancelToken | None = None,
) -> T:
    state = RetryState(policy)
    while True:
        try:
            result = await operation()
        except CommandError as exc:
            delay = state.record_failure(exc)
            failure = exc
        else:
            state.succeeded()
            return result
        if await _backoff_async(delay, cancel, sleep):
            raise state.cancelled(failure) from failure
        state.next_attempt()
