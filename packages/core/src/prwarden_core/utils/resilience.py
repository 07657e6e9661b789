"""Retry with exponential backoff, guarded by a circuit breaker.

Every external call (AI provider, comment store) goes through a Retrier:

    Retrier.run(func) → CircuitBreaker.before_call()   ← fail fast while open
                      → await func()                   ← one attempt
                      → record success / failure
                      → on TransientError: sleep base_delay * 2**attempt, retry

The breaker opens after ``failure_threshold`` consecutive failed attempts and
rejects calls with CircuitOpenError for ``cooldown`` seconds. It then
half-opens: a single trial call is let through, and its outcome either closes
the breaker or re-opens it for another cooldown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from prwarden_core.errors import CircuitOpenError, MalformedResponseError, TransientError

logger = logging.getLogger(__name__)

_MAX_RETRIES = 5
_BASE_DELAY = 2.0
_MAX_DELAY = 30.0


class CircuitBreaker:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self._state = self.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        if self._state == self.OPEN and self._clock() - self._opened_at >= self.cooldown:
            self._state = self.HALF_OPEN
            self._trial_in_flight = False
            logger.info("%s circuit half-open. Probing whether the service has recovered", self.name)
        return self._state

    def before_call(self) -> None:
        state = self.state
        if state == self.OPEN:
            remaining = self.cooldown - (self._clock() - self._opened_at)
            raise CircuitOpenError(f"{self.name} circuit is open; calls suspended for another {remaining:.0f}s")
        if state == self.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(f"{self.name} circuit is half-open; a trial call is already in flight")
            self._trial_in_flight = True

    def record_success(self) -> None:
        if self._state != self.CLOSED:
            logger.info("%s circuit closed. Resuming calls", self.name)
        self._state = self.CLOSED
        self._failures = 0
        self._trial_in_flight = False

    def release_trial(self) -> None:
        """Give back the half-open trial slot of a call that ended without an outcome (e.g. cancelled)."""
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        if self._state == self.HALF_OPEN or self._failures >= self.failure_threshold:
            if self._state != self.OPEN:
                logger.warning(
                    "%s circuit opened after %d consecutive failure(s). Blocking calls for %.0fs",
                    self.name,
                    self._failures,
                    self.cooldown,
                )
            self._state = self.OPEN
            self._opened_at = self._clock()
            self._trial_in_flight = False


class Retrier:
    def __init__(
        self,
        name: str,
        breaker: CircuitBreaker | None = None,
        max_retries: int = _MAX_RETRIES,
        base_delay: float = _BASE_DELAY,
        max_delay: float = _MAX_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.breaker = breaker
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * 2**attempt, self.max_delay)

    async def run(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func(*args, **kwargs)``, retrying TransientError with exponential backoff.

        CircuitOpenError, MalformedResponseError and non-transient errors are
        raised immediately. Cancellation is never swallowed.
        """
        for attempt in range(self.max_retries):
            if self.breaker is not None:
                self.breaker.before_call()
            try:
                result = await func(*args, **kwargs)
            except TransientError as e:
                self._failed()
                if attempt == self.max_retries - 1:
                    logger.error("%s failed after %d attempts: %s", self.name, self.max_retries, e)
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s transient failure (attempt %d/%d): %s. Retrying in %.0fs...",
                    self.name,
                    attempt + 1,
                    self.max_retries,
                    e,
                    delay,
                )
                await self._sleep(delay)
            except MalformedResponseError:
                # The service answered; the content was bad. Not a health signal.
                self._succeeded()
                raise
            except Exception:
                self._failed()
                raise
            except BaseException:
                # Cancelled: no health signal, but the trial slot must not leak.
                if self.breaker is not None:
                    self.breaker.release_trial()
                raise
            else:
                self._succeeded()
                return result

    def _failed(self) -> None:
        if self.breaker is not None:
            self.breaker.record_failure()

    def _succeeded(self) -> None:
        if self.breaker is not None:
            self.breaker.record_success()


def build_retrier(name: str, config: dict, circuit_key: str) -> Retrier:
    """Build a Retrier from the ``retry`` section and the named circuit section of the config."""
    retry = config.get("retry") or {}
    circuit = config.get(circuit_key) or {}
    breaker = CircuitBreaker(
        name,
        failure_threshold=int(circuit.get("failure_threshold", 5)),
        cooldown=float(circuit.get("cooldown_seconds", 60)),
    )
    return Retrier(
        name,
        breaker=breaker,
        max_retries=int(retry.get("max_retries", _MAX_RETRIES)),
        base_delay=float(retry.get("base_delay", _BASE_DELAY)),
        max_delay=float(retry.get("max_delay", _MAX_DELAY)),
    )
