"""
Rate limiting and budget management for LLM API calls.

All waiting is cooperative (asyncio.sleep). Bucket state is only touched
between suspension points, so concurrent acquirers on one event loop see
serial updates. Waiters are not served in FIFO order.
"""
import time
import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]

MIN_WAIT = 0.001


class TokenBucket:
    """Continuously refilling bucket: `rate` tokens every `per` seconds, up to `capacity`."""

    def __init__(self, rate: float, per: float = 1.0, capacity: Optional[float] = None,
                 clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        if rate is None or not rate > 0:
            raise ConfigurationError(f"rate must be positive. Received: {rate}")
        if not per > 0:
            raise ConfigurationError(f"per must be positive. Received: {per}")
        cap = rate if capacity is None else capacity
        if not cap > 0:
            raise ConfigurationError(f"capacity must be positive. Received: {capacity}")

        self.rate = float(rate)
        self.per = float(per)
        self.capacity = float(cap)
        self.tokens = self.capacity  # start full
        self._per_second = self.rate / self.per
        self._clock = clock
        self._sleep = sleep
        self._last = clock()

    def _refill(self):
        now = self._clock()
        elapsed = now - self._last
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self._per_second)
            self._last = now

    def available(self) -> float:
        """Current token level after refilling."""
        self._refill()
        return self.tokens

    async def acquire(self, n: float = 1):
        """Wait until `n` tokens exist, then deduct them.

        A request larger than the capacity waits for a full bucket and leaves
        the balance negative; later callers wait the debt off.
        """
        if n <= 0:
            return
        need = min(n, self.capacity)
        while True:
            self._refill()
            if self.tokens >= need:
                self.tokens -= n
                return
            wait = (need - self.tokens) / self._per_second
            await self._sleep(max(MIN_WAIT, wait))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DayCounter:
    """Fixed request quota per UTC day, reset at UTC midnight."""

    def __init__(self, capacity: int, now: Callable[[], datetime] = _utc_now,
                 sleep: Sleep = asyncio.sleep):
        if capacity is None or capacity <= 0:
            raise ConfigurationError(f"day capacity must be positive. Received: {capacity}")
        self.capacity = int(capacity)
        self.count = 0
        self._now = now
        self._sleep = sleep
        self.next_reset = self.next_utc_midnight(now())

    @staticmethod
    def next_utc_midnight(moment: datetime) -> datetime:
        day = moment.astimezone(timezone.utc).date() + timedelta(days=1)
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)

    def _maybe_reset(self):
        now = self._now()
        if now >= self.next_reset:
            logger.info(f"Daily request quota reset ({self.count}/{self.capacity} used)")
            self.count = 0
            self.next_reset = self.next_utc_midnight(now)

    def remaining(self) -> int:
        self._maybe_reset()
        return self.capacity - self.count

    async def acquire(self, n: int = 1):
        if n <= 0:
            return
        if n > self.capacity:
            raise ConfigurationError(f"Cannot acquire {n} requests from a daily quota of {self.capacity}")
        while True:
            self._maybe_reset()
            if self.count + n <= self.capacity:
                self.count += n
                return
            wait = (self.next_reset - self._now()).total_seconds()
            logger.warning(f"Daily request quota exhausted, waiting {wait:.0f}s for UTC midnight")
            await self._sleep(max(MIN_WAIT, wait))


@dataclass
class BudgetConfig:
    rps: float = 0
    burst: Optional[float] = None
    rpm: int = 0
    rpd: int = 0
    tpm: int = 0
    strict_tpm: bool = False

    def __post_init__(self):
        for name in ('rps', 'rpm', 'rpd', 'tpm'):
            value = getattr(self, name)
            if value is None or value < 0:
                raise ConfigurationError(f"{name} must not be negative. Received: {value}")
        if self.burst is not None and self.burst <= 0:
            raise ConfigurationError(f"burst must be positive. Received: {self.burst}")

    @classmethod
    def from_settings(cls, settings) -> 'BudgetConfig':
        return cls(
            rps=settings.rps,
            burst=settings.burst,
            rpm=settings.rpm,
            rpd=settings.rpd,
            tpm=settings.tpm,
            strict_tpm=settings.strict_tpm,
        )


class BudgetManager:
    """Request/token budgets for one LLM client (RPS, RPM, RPD, TPM)."""

    def __init__(self, config: BudgetConfig, clock: Clock = time.monotonic,
                 now: Callable[[], datetime] = _utc_now, sleep: Sleep = asyncio.sleep):
        self.config = config
        self.requests_per_second = (
            TokenBucket(config.rps, 1.0, config.burst, clock=clock, sleep=sleep) if config.rps > 0 else None
        )
        self.requests_per_minute = (
            TokenBucket(config.rpm, 60.0, clock=clock, sleep=sleep) if config.rpm > 0 else None
        )
        self.requests_per_day = DayCounter(config.rpd, now=now, sleep=sleep) if config.rpd > 0 else None
        self.tokens_per_minute = (
            TokenBucket(config.tpm, 60.0, clock=clock, sleep=sleep) if config.tpm > 0 else None
        )
        logger.info(
            f"Budget initialized: rps={config.rps} burst={config.burst} rpm={config.rpm} "
            f"rpd={config.rpd} tpm={config.tpm} strict_tpm={config.strict_tpm}"
        )

    @property
    def enabled(self) -> bool:
        return any((self.requests_per_second, self.requests_per_minute,
                    self.requests_per_day, self.tokens_per_minute))

    @property
    def strict_tpm(self) -> bool:
        return bool(self.config.strict_tpm and self.tokens_per_minute)

    async def acquire_request(self, expected_tokens: Optional[int] = None) -> int:
        """Gate one outbound request. Returns the number of tokens pre-reserved."""
        if self.requests_per_day:
            await self.requests_per_day.acquire(1)
        if self.requests_per_second:
            await self.requests_per_second.acquire(1)
        if self.requests_per_minute:
            await self.requests_per_minute.acquire(1)
        if self.strict_tpm and expected_tokens and expected_tokens > 0:
            await self.tokens_per_minute.acquire(expected_tokens)
            return expected_tokens
        return 0

    async def note_usage(self, used_tokens: Optional[int], reserved: int = 0):
        """Charge actual usage beyond what was reserved. Unused reservations are not refunded."""
        if not self.tokens_per_minute or not used_tokens or used_tokens <= 0:
            return
        need = used_tokens - (reserved or 0)
        if need > 0:
            await self.tokens_per_minute.acquire(need)


class RequestMonitor:
    """Monitor and track API request statistics."""

    def __init__(self):
        self.lock = threading.Lock()
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.total_tokens_used = 0
        self.avg_response_time = 0.0
        self.request_times = []
        self.start_time = time.time()

    def record_request(self, success: bool, tokens: int, response_time: float):
        """Record a completed request."""
        with self.lock:
            self.total_requests += 1
            self.total_tokens_used += tokens
            self.request_times.append(response_time)

            if success:
                self.successful_requests += 1
            else:
                self.failed_requests += 1

            # Moving average over the last 100 calls
            if len(self.request_times) > 100:
                self.request_times.pop(0)

            self.avg_response_time = sum(self.request_times) / len(self.request_times)

    def get_stats(self) -> Dict[str, Any]:
        """Get current statistics."""
        with self.lock:
            elapsed = time.time() - self.start_time
            return {
                'total_requests': self.total_requests,
                'success_rate': (self.successful_requests / max(1, self.total_requests)) * 100,
                'tokens_used': self.total_tokens_used,
                'avg_response_time': self.avg_response_time,
                'requests_per_second': self.total_requests / max(1, elapsed),
            }

    def log_status(self):
        """Log current status."""
        stats = self.get_stats()
        logger.info(
            f"API Stats: {stats['total_requests']} reqs, "
            f"{stats['success_rate']:.1f}% success, "
            f"{stats['tokens_used']} tokens, "
            f"{stats['avg_response_time']:.2f}s avg, "
            f"{stats['requests_per_second']:.2f} req/s"
        )
