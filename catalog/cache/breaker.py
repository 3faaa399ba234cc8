"""
Circuit Breaker

Wraps every cache backend call with a timeout and tracks the error rate
over a rolling window. When the error rate crosses the threshold the
circuit opens and calls fail immediately, without touching the backend,
until the cooldown has elapsed. Then a single probe call is let through:
success closes the circuit, failure opens it again.
"""

import asyncio
import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Tuple, Type

from catalog.cache.errors import BackendUnavailable


logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Error-rate circuit breaker for async backend calls.

    Args:
        name: Label used in log messages
        call_timeout: Seconds before a call counts as failed
        error_threshold: Failure ratio (0-1) that opens the circuit
        rolling_window: Seconds of call outcomes considered for the ratio
        minimum_calls: Calls required in the window before the ratio applies
        cooldown: Seconds the circuit stays open before probing
        failure_exceptions: Exception types counted as backend failures
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        name: str = "redis",
        call_timeout: float = 3.0,
        error_threshold: float = 0.5,
        rolling_window: float = 10.0,
        minimum_calls: int = 5,
        cooldown: float = 30.0,
        failure_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.call_timeout = call_timeout
        self.error_threshold = error_threshold
        self.rolling_window = rolling_window
        self.minimum_calls = max(1, minimum_calls)
        self.cooldown = cooldown
        self.failure_exceptions = failure_exceptions
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._probe_in_flight = False
        # (timestamp, succeeded)
        self._outcomes: Deque[Tuple[float, bool]] = deque()

    @property
    def state(self) -> CircuitState:
        """Current state; an open circuit turns half-open once the cooldown is over."""
        if (
            self._state is CircuitState.OPEN
            and self._clock() - self._opened_at >= self.cooldown
        ):
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
            logger.info(f"Circuit breaker '{self.name}' half-open, probing backend")
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def error_rate(self) -> float:
        """Failure ratio over the rolling window."""
        self._prune()
        if not self._outcomes:
            return 0.0
        failures = sum(1 for _, ok in self._outcomes if not ok)
        return failures / len(self._outcomes)

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Run ``func`` under the breaker.

        Raises:
            BackendUnavailable: circuit open, probe already running,
                timeout, or one of ``failure_exceptions``
        """
        is_probe = self._before_call()
        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            self._record_failure(is_probe)
            raise BackendUnavailable(
                f"{self.name} call timed out after {self.call_timeout}s"
            ) from e
        except self.failure_exceptions as e:
            self._record_failure(is_probe)
            raise BackendUnavailable(f"{self.name} call failed: {e}") from e
        else:
            self._record_success(is_probe)
            return result
        finally:
            if is_probe:
                self._probe_in_flight = False

    def remaining_cooldown(self) -> float:
        """Seconds until an open circuit admits its probe; 0 when not open."""
        if self._state is not CircuitState.OPEN:
            return 0.0
        return max(0.0, self.cooldown - (self._clock() - self._opened_at))

    def reset(self):
        """Force the circuit closed and forget recorded outcomes."""
        self._state = CircuitState.CLOSED
        self._probe_in_flight = False
        self._outcomes.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "error_rate": round(self.error_rate(), 3),
            "calls_in_window": len(self._outcomes),
        }

    # =========================================================================
    # State transitions
    # =========================================================================

    def _before_call(self) -> bool:
        """Admit or reject a call. Returns True when the call is the half-open probe."""
        state = self.state
        if state is CircuitState.OPEN:
            raise BackendUnavailable(f"Circuit breaker '{self.name}' is open")
        if state is CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise BackendUnavailable(
                    f"Circuit breaker '{self.name}' is half-open, probe in progress"
                )
            self._probe_in_flight = True
            return True
        return False

    # Only the probe decides a half-open circuit. Calls admitted while closed
    # that finish after the circuit opened are not counted.

    def _record_success(self, is_probe: bool = False):
        if is_probe:
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._outcomes.clear()
                logger.info(f"Circuit breaker '{self.name}' closed after successful probe")
            return
        if self._state is CircuitState.CLOSED:
            self._append(True)

    def _record_failure(self, is_probe: bool = False):
        if is_probe:
            if self._state is CircuitState.HALF_OPEN:
                self._open()
            return
        if self._state is not CircuitState.CLOSED:
            return
        self._append(False)
        if (
            len(self._outcomes) >= self.minimum_calls
            and self.error_rate() >= self.error_threshold
        ):
            self._open()

    def _open(self):
        rate = self.error_rate()
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._outcomes.clear()
        logger.warning(
            f"Circuit breaker '{self.name}' opened (error rate {rate:.0%}). "
            f"Will probe again in {self.cooldown} seconds."
        )

    def _append(self, succeeded: bool):
        self._outcomes.append((self._clock(), succeeded))
        self._prune()

    def _prune(self):
        cutoff = self._clock() - self.rolling_window
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()
