"""Tests for the per-domain rate limiter and circuit breaker."""

import pytest

from services.regulatory_truth.collector import DomainRateLimiter, RateLimitConfig
from services.regulatory_truth.collector.rate_limiter import domain_of
from services.regulatory_truth.errors import CircuitOpenError


class FakeTime:
    """Monotonic clock whose sleep just moves time forward."""

    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


def make_limiter(fake_time: FakeTime, **overrides: float) -> DomainRateLimiter:
    config = RateLimitConfig(
        request_delay_seconds=2.0,
        max_requests_per_minute=20,
        max_concurrent_requests=1,
        circuit_breaker_threshold=5,
        circuit_breaker_cooldown_seconds=3600.0,
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return DomainRateLimiter(config, clock=fake_time.clock, sleep=fake_time.sleep)


class TestPoliteness:
    """Tests for request spacing."""

    @pytest.mark.asyncio
    async def test_delay_between_requests(self, fake_time: FakeTime) -> None:
        """Consecutive requests to one domain are spaced by the delay."""
        limiter = make_limiter(fake_time)

        async with limiter.slot("porezna.gov.hr"):
            pass
        async with limiter.slot("porezna.gov.hr"):
            pass

        assert fake_time.sleeps == [2.0]

    @pytest.mark.asyncio
    async def test_domains_are_independent(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time)

        async with limiter.slot("a.gov.hr"):
            pass
        async with limiter.slot("b.gov.hr"):
            pass

        assert fake_time.sleeps == []

    @pytest.mark.asyncio
    async def test_per_minute_budget(self, fake_time: FakeTime) -> None:
        """The request after the budget waits for the window to roll."""
        limiter = make_limiter(fake_time, request_delay_seconds=0.0, max_requests_per_minute=3)

        for _ in range(4):
            async with limiter.slot("nn.hr"):
                pass

        assert fake_time.sleeps == [60.0]
        assert limiter.state("nn.hr").total_requests == 4


class TestCircuitBreaker:
    """Tests for opening, cooldown and manual reset."""

    def test_opens_at_threshold(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time)

        for i in range(4):
            limiter.record_failure("hzzo.hr", f"HTTP 503 #{i}")
        assert not limiter.state("hzzo.hr").circuit_open

        limiter.record_failure("hzzo.hr", "HTTP 503 #5")
        assert limiter.state("hzzo.hr").circuit_open

    def test_success_resets_count(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time)

        for _ in range(4):
            limiter.record_failure("hzzo.hr", "timeout")
        limiter.record_success("hzzo.hr")
        limiter.record_failure("hzzo.hr", "timeout")

        assert limiter.state("hzzo.hr").consecutive_errors == 1
        assert not limiter.state("hzzo.hr").circuit_open

    @pytest.mark.asyncio
    async def test_open_circuit_refuses_slot(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time)
        for _ in range(5):
            limiter.record_failure("hzzo.hr", "timeout")

        with pytest.raises(CircuitOpenError):
            async with limiter.slot("hzzo.hr"):
                pass

    @pytest.mark.asyncio
    async def test_circuit_closes_after_cooldown(self, fake_time: FakeTime) -> None:
        """After the cooldown a request is allowed again."""
        limiter = make_limiter(fake_time)
        for _ in range(5):
            limiter.record_failure("hzzo.hr", "timeout")

        fake_time.now += 3600.0
        async with limiter.slot("hzzo.hr") as state:
            assert not state.circuit_open
        assert limiter.state("hzzo.hr").consecutive_errors == 0

    @pytest.mark.asyncio
    async def test_manual_reset(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time)
        for _ in range(5):
            limiter.record_failure("hzzo.hr", "timeout")

        limiter.reset("hzzo.hr")

        async with limiter.slot("hzzo.hr"):
            pass
        assert limiter.is_healthy("hzzo.hr")


class TestHealth:
    """Tests for health reporting."""

    def test_unhealthy_before_circuit_opens(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time)
        for _ in range(3):
            limiter.record_failure("mfin.gov.hr", "HTTP 500")

        snapshot = limiter.health()["mfin.gov.hr"]

        assert snapshot["healthy"] is False
        assert snapshot["circuit_open"] is False
        assert snapshot["last_error"] == "HTTP 500"

    def test_retry_after_reported(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time)
        for _ in range(5):
            limiter.record_failure("mfin.gov.hr", "HTTP 500")
        fake_time.now += 600.0

        assert limiter.health()["mfin.gov.hr"]["retry_after_seconds"] == 3000.0

    def test_domain_of(self) -> None:
        assert domain_of("https://Porezna-Uprava.gov.hr/pdv?x=1") == "porezna-uprava.gov.hr"
        with pytest.raises(ValueError):
            domain_of("not a url")
