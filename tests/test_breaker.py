"""
Tests for the circuit breaker.

These tests verify:
- Closed -> Open when the error rate over the window crosses the threshold
- Fail-fast while open, without calling the backend
- Open -> HalfOpen after the cooldown, single probe
- HalfOpen -> Closed on success, HalfOpen -> Open on failure
"""

import asyncio
import time

import pytest

from catalog.cache.breaker import CircuitBreaker, CircuitState
from catalog.cache.errors import BackendUnavailable


class Backend:
    """Counts calls; fails or hangs on demand."""

    def __init__(self):
        self.calls = 0
        self.fail = False
        self.hang = False

    async def __call__(self):
        self.calls += 1
        if self.hang:
            await asyncio.sleep(5)
        if self.fail:
            raise ConnectionError("backend down")
        return "ok"


@pytest.fixture
def backend():
    return Backend()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        name="test",
        call_timeout=0.05,
        error_threshold=0.5,
        rolling_window=10.0,
        minimum_calls=2,
        cooldown=30.0,
        clock=clock,
    )


async def trip(breaker, backend):
    backend.fail = True
    for _ in range(breaker.minimum_calls):
        with pytest.raises(BackendUnavailable):
            await breaker.call(backend)
    backend.fail = False


@pytest.mark.asyncio
class TestCircuitBreaker:
    """Breaker state transitions."""

    async def test_successful_call_passes_through(self, breaker, backend):
        """A healthy backend is called and its result returned."""
        assert await breaker.call(backend) == "ok"
        assert backend.calls == 1
        assert breaker.state is CircuitState.CLOSED

    async def test_failure_raises_backend_unavailable(self, breaker, backend):
        """Backend exceptions surface as BackendUnavailable with the cause attached."""
        backend.fail = True
        with pytest.raises(BackendUnavailable) as exc_info:
            await breaker.call(backend)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    async def test_stays_closed_below_minimum_calls(self, breaker, backend):
        """One failure is not enough data to open the circuit."""
        backend.fail = True
        with pytest.raises(BackendUnavailable):
            await breaker.call(backend)
        assert breaker.state is CircuitState.CLOSED

    async def test_stays_closed_below_error_threshold(self, clock, backend):
        """Error rate under the threshold keeps the circuit closed."""
        breaker = CircuitBreaker(error_threshold=0.5, minimum_calls=4, clock=clock)
        for _ in range(3):
            await breaker.call(backend)
        backend.fail = True
        with pytest.raises(BackendUnavailable):
            await breaker.call(backend)
        assert breaker.error_rate() == 0.25
        assert breaker.state is CircuitState.CLOSED

    async def test_opens_when_error_rate_exceeds_threshold(self, breaker, backend):
        """Failures over the threshold open the circuit."""
        await trip(breaker, backend)
        assert breaker.state is CircuitState.OPEN
        assert breaker.is_open

    async def test_old_failures_leave_the_window(self, breaker, backend, clock):
        """Failures older than the rolling window don't count."""
        backend.fail = True
        with pytest.raises(BackendUnavailable):
            await breaker.call(backend)
        clock.advance(11)
        with pytest.raises(BackendUnavailable):
            await breaker.call(backend)
        assert breaker.state is CircuitState.CLOSED

    async def test_timeout_counts_as_failure(self, breaker, backend):
        """A hanging backend call fails after the call timeout."""
        backend.hang = True
        start = time.perf_counter()
        with pytest.raises(BackendUnavailable, match="timed out"):
            await breaker.call(backend)
        assert time.perf_counter() - start < 1.0
        assert breaker.error_rate() == 1.0

    async def test_open_circuit_fails_fast(self, breaker, backend):
        """While open, calls fail immediately without waiting for the timeout."""
        backend.hang = True
        for _ in range(breaker.minimum_calls):
            with pytest.raises(BackendUnavailable):
                await breaker.call(backend)
        assert breaker.is_open
        calls_before = backend.calls

        start = time.perf_counter()
        with pytest.raises(BackendUnavailable, match="open"):
            await breaker.call(backend)
        elapsed = time.perf_counter() - start

        assert elapsed < breaker.call_timeout / 2
        assert backend.calls == calls_before

    async def test_half_open_after_cooldown(self, breaker, backend, clock):
        """The circuit allows a probe once the cooldown has elapsed."""
        await trip(breaker, backend)
        clock.advance(29)
        assert breaker.state is CircuitState.OPEN
        clock.advance(1)
        assert breaker.state is CircuitState.HALF_OPEN

    async def test_successful_probe_closes(self, breaker, backend, clock):
        """HalfOpen -> Closed on a successful probe."""
        await trip(breaker, backend)
        clock.advance(30)
        assert await breaker.call(backend) == "ok"
        assert breaker.state is CircuitState.CLOSED
        assert breaker.error_rate() == 0.0

    async def test_failed_probe_reopens(self, breaker, backend, clock):
        """HalfOpen -> Open on a failed probe, with a fresh cooldown."""
        await trip(breaker, backend)
        clock.advance(30)
        backend.fail = True
        with pytest.raises(BackendUnavailable):
            await breaker.call(backend)
        assert breaker.state is CircuitState.OPEN
        clock.advance(29)
        assert breaker.state is CircuitState.OPEN

    async def test_only_one_probe_in_flight(self, breaker, backend, clock):
        """Concurrent calls are rejected while the probe is running."""
        await trip(breaker, backend)
        clock.advance(30)

        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "probe"

        probe = asyncio.create_task(breaker.call(slow_probe))
        await asyncio.sleep(0)

        with pytest.raises(BackendUnavailable, match="probe in progress"):
            await breaker.call(backend)

        release.set()
        assert await probe == "probe"
        assert breaker.state is CircuitState.CLOSED

    async def test_late_call_does_not_decide_half_open_circuit(self, clock, backend):
        """A call admitted while closed and finishing after the cooldown is not the probe."""
        breaker = CircuitBreaker(call_timeout=1.0, minimum_calls=2, cooldown=30.0, clock=clock)
        release = asyncio.Event()

        async def slow_call():
            await release.wait()
            return "late"

        late = asyncio.create_task(breaker.call(slow_call))
        await asyncio.sleep(0)

        await trip(breaker, backend)
        clock.advance(30)
        assert breaker.state is CircuitState.HALF_OPEN

        release.set()
        assert await late == "late"
        assert breaker.state is CircuitState.HALF_OPEN

        assert await breaker.call(backend) == "ok"
        assert breaker.state is CircuitState.CLOSED

    async def test_late_failure_does_not_reopen_half_open_circuit(self, clock, backend):
        breaker = CircuitBreaker(call_timeout=1.0, minimum_calls=2, cooldown=30.0, clock=clock)
        release = asyncio.Event()

        async def slow_failure():
            await release.wait()
            raise ConnectionError("late failure")

        late = asyncio.create_task(breaker.call(slow_failure))
        await asyncio.sleep(0)

        await trip(breaker, backend)
        clock.advance(30)

        release.set()
        with pytest.raises(BackendUnavailable):
            await late
        assert breaker.state is CircuitState.HALF_OPEN

    async def test_remaining_cooldown(self, breaker, backend, clock):
        assert breaker.remaining_cooldown() == 0.0
        await trip(breaker, backend)
        clock.advance(10)
        assert breaker.remaining_cooldown() == pytest.approx(20.0)
        clock.advance(25)
        assert breaker.remaining_cooldown() == 0.0

    async def test_reset(self, breaker, backend):
        """reset() closes the circuit."""
        await trip(breaker, backend)
        breaker.reset()
        assert breaker.state is CircuitState.CLOSED
        assert await breaker.call(backend) == "ok"
