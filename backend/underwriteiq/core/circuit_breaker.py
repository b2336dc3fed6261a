"""Per-process circuit breaker for the LLM parser.

closed -> open after N consecutive failures; open -> half-open once the
cool-down elapses; half-open lets a single probe through. A probe success
closes the breaker, a probe failure re-opens it.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from underwriteiq.core.constants import BREAKER_COOLDOWN, BREAKER_FAILURE_THRESHOLD
from underwriteiq.core.logger import logger


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class BreakerDecision:
    allowed: bool
    reason: str = ""
    retry_after: int = 0


class CircuitBreaker:
    def __init__(
        self,
        name: str = "llm",
        failure_threshold: int = BREAKER_FAILURE_THRESHOLD,
        cooldown: float = BREAKER_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self.state = BreakerState.CLOSED
        self.failures = 0
        self.last_failure_time: float | None = None
        self._probe_in_flight = False

    def before(self) -> BreakerDecision:
        """Decide whether the next call may reach the network."""
        if self.state == BreakerState.OPEN:
            elapsed = self._clock() - (self.last_failure_time or 0.0)
            if elapsed < self.cooldown:
                remaining = max(1, math.ceil(self.cooldown - elapsed))
                return BreakerDecision(
                    allowed=False,
                    reason=(
                        "Our report analyzer is temporarily unavailable. "
                        f"Please try again in {remaining} seconds."
                    ),
                    retry_after=remaining,
                )
            self.state = BreakerState.HALF_OPEN
            logger.info(f"Circuit '{self.name}': cool-down elapsed, half-open")

        if self.state == BreakerState.HALF_OPEN:
            if self._probe_in_flight:
                return BreakerDecision(
                    allowed=False,
                    reason="Our report analyzer is recovering. Please try again in a few seconds.",
                    retry_after=1,
                )
            self._probe_in_flight = True

        return BreakerDecision(allowed=True)

    def on_success(self) -> None:
        if self.state != BreakerState.CLOSED:
            logger.info(f"Circuit '{self.name}': probe succeeded, closed")
        self.state = BreakerState.CLOSED
        self.failures = 0
        self._probe_in_flight = False

    def on_failure(self) -> None:
        self.failures += 1
        self.last_failure_time = self._clock()
        self._probe_in_flight = False
        if self.state == BreakerState.HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != BreakerState.OPEN:
                logger.warning(
                    f"Circuit '{self.name}': open after {self.failures} failure(s), "
                    f"cooling down {self.cooldown}s"
                )
            self.state = BreakerState.OPEN

    def release(self) -> None:
        """Free a half-open probe slot for a call that neither succeeded nor failed."""
        self._probe_in_flight = False

    def reset(self) -> None:
        self.state = BreakerState.CLOSED
        self.failures = 0
        self.last_failure_time = None
        self._probe_in_flight = False
