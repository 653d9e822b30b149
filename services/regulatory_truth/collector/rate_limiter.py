"""
Per-Domain Rate Limiter
=======================

Politeness and circuit breaking for outbound fetches, keyed by hostname.

For every domain the limiter enforces:
- a fixed delay between consecutive requests
- a maximum number of requests in any trailing minute
- a bounded number of in-flight requests (one by default)
- a circuit breaker that opens after N consecutive failures and
  resets itself once the cooldown has elapsed

State lives on the instance (one `DomainState` per domain) and the clock
and sleep functions are injectable, so behaviour is fully testable.

Version: 0.1.0
"""

import asyncio
import time
from collections import deque
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from services.regulatory_truth.errors import CircuitOpenError
from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)

# A domain with this many consecutive errors is reported unhealthy
UNHEALTHY_ERROR_COUNT = 3


def domain_of(url: str) -> str:
    """Hostname used as the rate-limit key."""
    host = urlparse(url).hostname
    if not host:
        raise ValueError(f"URL has no host: {url!r}")
    return host.lower()


@dataclass
class RateLimitConfig:
    request_delay_seconds: float = 2.0
    max_requests_per_minute: int = 20
    max_concurrent_requests: int = 1
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown_seconds: float = 3600.0

    @classmethod
    def from_settings(cls) -> "RateLimitConfig":
        collector = settings.collector
        return cls(
            request_delay_seconds=collector.request_delay_seconds,
            max_requests_per_minute=collector.max_requests_per_minute,
            max_concurrent_requests=collector.max_concurrent_requests,
            circuit_breaker_threshold=collector.circuit_breaker_threshold,
            circuit_breaker_cooldown_seconds=float(collector.circuit_breaker_cooldown_seconds),
        )


@dataclass
class DomainState:
    """Observable limiter state for one domain."""

    domain: str
    semaphore: asyncio.Semaphore
    request_times: deque[float] = field(default_factory=deque)
    last_request_at: float | None = None
    in_flight: int = 0

    consecutive_errors: int = 0
    circuit_opened_at: float | None = None
    total_requests: int = 0
    total_failures: int = 0
    last_error: str | None = None

    @property
    def circuit_open(self) -> bool:
        return self.circuit_opened_at is not None


class DomainRateLimiter:
    """
    Rate limiter and circuit breaker for outbound requests.

    Usage:
        limiter = DomainRateLimiter()
        async with limiter.slot("example.gov"):
            response = await fetch(url)
        limiter.record_success("example.gov")
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or RateLimitConfig.from_settings()
        self._clock = clock
        self._sleep = sleep
        self._domains: dict[str, DomainState] = {}

    def state(self, domain: str) -> DomainState:
        if domain not in self._domains:
            self._domains[domain] = DomainState(
                domain=domain,
                semaphore=asyncio.Semaphore(self.config.max_concurrent_requests),
            )
        return self._domains[domain]

    def _check_circuit(self, state: DomainState) -> None:
        """Raise while the circuit is open; close it once the cooldown passed."""
        if state.circuit_opened_at is None:
            return
        elapsed = self._clock() - state.circuit_opened_at
        cooldown = self.config.circuit_breaker_cooldown_seconds
        if elapsed >= cooldown:
            state.circuit_opened_at = None
            state.consecutive_errors = 0
            logger.info("circuit_reset", domain=state.domain, after_seconds=round(elapsed, 1))
            return
        raise CircuitOpenError(
            f"circuit open for {state.domain}",
            domain=state.domain,
            retry_after=cooldown - elapsed,
        )

    def _budget_wait(self, state: DomainState) -> float:
        """Seconds to wait before the next request is allowed."""
        now = self._clock()
        while state.request_times and now - state.request_times[0] >= 60.0:
            state.request_times.popleft()

        wait = 0.0
        if state.last_request_at is not None:
            wait = max(wait, state.last_request_at + self.config.request_delay_seconds - now)
        if len(state.request_times) >= self.config.max_requests_per_minute:
            wait = max(wait, state.request_times[0] + 60.0 - now)
        return wait

    @asynccontextmanager
    async def slot(self, domain: str) -> AsyncGenerator[DomainState, None]:
        """
        Hold a request slot for `domain`.

        Raises:
            CircuitOpenError: the domain's circuit is open
        """
        state = self.state(domain)
        self._check_circuit(state)

        async with state.semaphore:
            self._check_circuit(state)
            wait = self._budget_wait(state)
            while wait > 0:
                logger.debug("rate_limit_wait", domain=domain, wait_seconds=round(wait, 3))
                await self._sleep(wait)
                wait = self._budget_wait(state)

            now = self._clock()
            state.last_request_at = now
            state.request_times.append(now)
            state.total_requests += 1
            state.in_flight += 1
            try:
                yield state
            finally:
                state.in_flight -= 1

    def record_success(self, domain: str) -> None:
        state = self.state(domain)
        state.consecutive_errors = 0
        state.last_error = None

    def record_failure(self, domain: str, error: str) -> None:
        state = self.state(domain)
        state.consecutive_errors += 1
        state.total_failures += 1
        state.last_error = error

        if (
            state.circuit_opened_at is None
            and state.consecutive_errors >= self.config.circuit_breaker_threshold
        ):
            state.circuit_opened_at = self._clock()
            logger.warning(
                "circuit_opened",
                domain=domain,
                consecutive_errors=state.consecutive_errors,
                cooldown_seconds=self.config.circuit_breaker_cooldown_seconds,
            )

    def reset(self, domain: str) -> None:
        """Forget failures and close the circuit (manual override)."""
        state = self.state(domain)
        state.consecutive_errors = 0
        state.circuit_opened_at = None
        state.last_error = None
        logger.info("circuit_manually_reset", domain=domain)

    def is_healthy(self, domain: str) -> bool:
        state = self.state(domain)
        return not state.circuit_open and state.consecutive_errors < UNHEALTHY_ERROR_COUNT

    def health(self) -> dict[str, dict[str, Any]]:
        """Snapshot of every domain seen so far."""
        now = self._clock()
        snapshot: dict[str, dict[str, Any]] = {}
        for domain, state in self._domains.items():
            retry_after = None
            if state.circuit_opened_at is not None:
                retry_after = max(
                    0.0,
                    state.circuit_opened_at + self.config.circuit_breaker_cooldown_seconds - now,
                )
            snapshot[domain] = {
                "healthy": self.is_healthy(domain),
                "circuit_open": state.circuit_open,
                "retry_after_seconds": retry_after,
                "consecutive_errors": state.consecutive_errors,
                "total_requests": state.total_requests,
                "total_failures": state.total_failures,
                "requests_last_minute": sum(1 for t in state.request_times if now - t < 60.0),
                "last_error": state.last_error,
            }
        return snapshot
