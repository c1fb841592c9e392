"""
Retry policy for backend calls: retriable error classification and
exponential backoff with full jitter, driven by tenacity.
"""
import errno
import random
import socket
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import openai
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from core.errors import LLMTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')

RETRIABLE_STATUS = {408, 429, 500, 503}
RETRIABLE_CODES = {"ETIMEDOUT", "ECONNRESET", "ENETUNREACH", "EAI_AGAIN"}


def _status_of(exc: BaseException):
    for attr in ('status_code', 'status'):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, 'response', None)
    if response is not None:
        for attr in ('status_code', 'status'):
            value = getattr(response, attr, None)
            if isinstance(value, int):
                return value
    return None


def _code_of(exc: BaseException):
    if isinstance(exc, socket.gaierror) and exc.errno == getattr(socket, 'EAI_AGAIN', None):
        return "EAI_AGAIN"
    code = getattr(exc, 'code', None)
    if isinstance(code, str):
        return code
    err = getattr(exc, 'errno', None)
    if isinstance(err, int):
        return errno.errorcode.get(err)
    return None


def is_retriable(exc: BaseException) -> bool:
    """Transient failures worth another attempt: timeouts, 408/429/500/503, network resets."""
    if isinstance(exc, (LLMTimeoutError, asyncio.TimeoutError)):
        return True
    if _status_of(exc) in RETRIABLE_STATUS:
        return True
    if isinstance(exc, openai.APIConnectionError):
        return True
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError)):
        return True
    return _code_of(exc) in RETRIABLE_CODES


def backoff_delay(attempt: int, base: float, cap: float,
                  rng: Callable[[], float] = random.random) -> float:
    """Full jitter: uniform(0, min(cap, base * 2**attempt)), attempt counted from 0."""
    ceiling = min(cap, base * (2 ** attempt))
    return rng() * ceiling


class wait_full_jitter(wait_base):
    def __init__(self, base: float, cap: float, rng: Callable[[], float] = random.random):
        self.base = base
        self.cap = cap
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return backoff_delay(retry_state.attempt_number - 1, self.base, self.cap, self.rng)


@dataclass
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0

    @classmethod
    def from_settings(cls, settings) -> 'RetryPolicy':
        return cls(
            max_retries=settings.retry_max,
            base_delay=settings.retry_base_ms / 1000,
            max_delay=settings.retry_max_ms / 1000,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def _log_retry(retry_state: RetryCallState):
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Retrying after attempt {retry_state.attempt_number} failed "
        f"({type(exc).__name__}: {exc}); sleeping {delay:.2f}s"
    )


def build_retrying(policy: RetryPolicy, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                   rng: Callable[[], float] = random.random) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_full_jitter(policy.base_delay, policy.max_delay, rng),
        retry=retry_if_exception(is_retriable),
        before_sleep=_log_retry,
        reraise=True,
        sleep=sleep,
    )


async def call_with_retry(op: Callable[[], Awaitable[T]], policy: RetryPolicy,
                          sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> T:
    """Run `op` until it succeeds, fails non-retriably, or exhausts the policy.

    `op` may be any callable returning an awaitable (a lambda, a partial).
    """
    # AsyncRetrying only awaits coroutine functions, so wrap whatever we got
    async def attempt() -> T:
        return await op()

    return await build_retrying(policy, sleep=sleep)(attempt)
