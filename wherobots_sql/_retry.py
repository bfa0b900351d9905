# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Retry, backoff and timeout handling for transient failures.

Provides ``run_with_retry``, a generic loop that runs an abortable async
operation with a per-attempt timeout and lets the caller decide after every
attempt whether to go again, plus ``ResiliencyConfig`` and
``should_retry_for_resiliency`` for the transport-level retry policy shared
by session provisioning and channel connection.

Logger: ``wherobots_sql.retry``.  Retry attempts are logged at DEBUG level.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx

from wherobots_sql._signal import CancellationSignal
from wherobots_sql.errors import AttemptTimeoutError

__all__ = [
    "ResiliencyConfig",
    "backoff_delay",
    "run_with_retry",
    "should_retry_for_resiliency",
]

_logger = logging.getLogger("wherobots_sql.retry")

_T = TypeVar("_T")

# Status codes produced by the gateway in front of the session service
# while it is restarting or overloaded.
_DEFAULT_RETRYABLE: frozenset[int] = frozenset({502, 503})

RetryDecision = Callable[[int, BaseException | None, _T | None], bool | Awaitable[bool]]
Sleep = Callable[[float], Awaitable[object]]


@dataclass(frozen=True)
class ResiliencyConfig:
    """Configuration for retrying transient failures.

    Attributes:
        max_retries: Number of resiliency retries (total calls =
            max_retries + 1) for each retried phase.
        retryable_status_codes: HTTP status codes eligible for retry.
        retry_on_connection_error: Whether ``httpx.ConnectError`` is
            retried like a timeout.
        request_timeout: Per-attempt timeout for HTTP calls, in seconds.
        connect_timeout: Per-attempt timeout for opening the channel, in
            seconds.

    Raises:
        ValueError: If *max_retries* < 0 or a timeout is not positive.

    """

    max_retries: int = 3
    retryable_status_codes: frozenset[int] = field(default_factory=lambda: _DEFAULT_RETRYABLE)
    retry_on_connection_error: bool = True
    request_timeout: float = 10.0
    connect_timeout: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")
        if self.connect_timeout <= 0:
            raise ValueError(f"connect_timeout must be > 0, got {self.connect_timeout}")


def _jitter(delay: float) -> float:
    """Pick a delay uniformly between 50% and 100% of *delay*."""
    return delay / 2 + (delay / 2) * random.random()


def backoff_delay(attempt: int) -> float:
    """Return the delay in seconds before retrying after *attempt*.

    The base delay is 1s for the first two attempts, 2s for the third and
    5s afterwards, each scaled by a random factor in [0.5, 1.0] so that
    concurrent clients do not retry in lockstep.
    """
    if attempt <= 1:
        return _jitter(1.0)
    if attempt == 2:
        return _jitter(2.0)
    return _jitter(5.0)


def is_timeout(error: BaseException | None) -> bool:
    """Whether *error* is a timeout from the retry loop or the HTTP client."""
    return isinstance(error, (TimeoutError, httpx.TimeoutException))


def should_retry_for_resiliency(
    attempt: int,
    error: BaseException | None,
    response: httpx.Response | None,
    config: ResiliencyConfig,
) -> bool:
    """Decide whether a failed HTTP attempt is worth another try.

    Only transport-level trouble qualifies: a retryable status code, a
    timeout, or (when enabled) a connection error.  Everything else,
    including authentication failures, is left to the caller.

    Args:
        attempt: Zero-based index of the attempt that just finished.
        error: Exception raised by the attempt, or ``None``.
        response: Response returned by the attempt, or ``None``.
        config: Retry budget and retryable conditions.

    Returns:
        ``True`` if the attempt should be retried.

    """
    if attempt >= config.max_retries:
        return False
    if response is not None and response.status_code in config.retryable_status_codes:
        _logger.debug(
            "Retrying due to HTTP status %d (attempt %d/%d)",
            response.status_code,
            attempt + 1,
            config.max_retries + 1,
            extra={"status": response.status_code, "attempt": attempt},
        )
        return True
    if is_timeout(error):
        _logger.debug(
            "Retrying due to timeout (attempt %d/%d)",
            attempt + 1,
            config.max_retries + 1,
            extra={"attempt": attempt},
        )
        return True
    if config.retry_on_connection_error and isinstance(error, httpx.ConnectError):
        _logger.debug(
            "Retrying due to connection error (attempt %d/%d): %s",
            attempt + 1,
            config.max_retries + 1,
            error,
            extra={"attempt": attempt},
        )
        return True
    return False


async def run_with_retry(
    operation: Callable[[CancellationSignal], Awaitable[_T]],
    *,
    timeout: float,
    retry_on: RetryDecision[_T],
    retry_delay: Callable[[int], float] = backoff_delay,
    sleep: Sleep = asyncio.sleep,
) -> _T:
    """Run *operation* until *retry_on* says stop.

    Each attempt receives its own ``CancellationSignal``, triggered with an
    ``AttemptTimeoutError`` once *timeout* seconds pass.  Operations should
    subscribe to it to release resources held by the abandoned attempt; the
    attempt itself is cancelled through asyncio either way.

    The engine places no cap on the number of attempts: *retry_on* is
    responsible for ending the loop.

    Args:
        operation: Callable performing one attempt.
        timeout: Per-attempt timeout in seconds.
        retry_on: Called with the zero-based attempt index and either the
            raised exception or the returned result.  May be async.
        retry_delay: Maps the attempt index to a delay in seconds.
        sleep: Sleep function (injectable for tests).

    Returns:
        The result of the last attempt.

    Raises:
        BaseException: The exception of the last attempt, if it failed.

    """
    attempt = 0
    while True:
        error, result = await _perform_attempt(operation, timeout)
        decision = retry_on(attempt, error, result)
        if inspect.isawaitable(decision):
            decision = await decision
        if not decision:
            break
        delay = retry_delay(attempt)
        _logger.debug("Attempt %d finished, retrying in %.2fs", attempt + 1, delay, extra={"attempt": attempt})
        await sleep(delay)
        attempt += 1
    if error is not None:
        raise error
    return result  # type: ignore[return-value]


async def _perform_attempt(
    operation: Callable[[CancellationSignal], Awaitable[_T]],
    timeout: float,
) -> tuple[BaseException | None, _T | None]:
    """Run a single attempt, returning ``(error, result)``."""
    signal = CancellationSignal()
    handle = asyncio.get_running_loop().call_later(timeout, signal.cancel, AttemptTimeoutError(timeout))
    try:
        return None, await signal.guard(operation(signal))
    except Exception as exc:
        return exc, None
    finally:
        handle.cancel()
