"""Per-endpoint circuit breakers for provider calls.

A breaker stops traffic to a provider that keeps failing, waits out a
cooldown, then lets a single trial call decide whether traffic resumes.

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(cooldown elapsed)--> HALF_OPEN
    HALF_OPEN --(trial succeeds)--> CLOSED
    HALF_OPEN --(trial fails)--> OPEN, cooldown escalated

Breakers are shared by every job in the process, so all state sits behind
a lock and time comes from an injectable monotonic clock.

Example usage:
    registry = CircuitBreakerRegistry(config)
    breaker = registry.get("JINA_API")
    if not breaker.try_acquire():
        return fallback(breaker.time_until_retry())
    outcome = await call()
    breaker.record_success() if outcome.ok else breaker.record_failure()
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from enum import Enum
from threading import Lock
from typing import Any

from diligence.core.config import CircuitBreakerConfig, DiligenceConfig
from diligence.core.logging import get_logger

_logger = get_logger("circuit_breaker")

Clock = Callable[[], float]


class CircuitState(str, Enum):
    """Whether a provider endpoint is currently accepting calls."""

    CLOSED = "closed"
    """Calls flow; consecutive failures are counted."""

    OPEN = "open"
    """Calls are short-circuited until the cooldown elapses."""

    HALF_OPEN = "half_open"
    """One trial call is admitted to probe recovery."""


@dataclass
class CircuitBreakerStats:
    """Lifetime counters for one endpoint; kept across resets."""

    successes: int = 0
    failures: int = 0
    short_circuited: int = 0
    opened: int = 0
    trials: int = 0
    recoveries: int = 0
    last_failure_at: float | None = None
    last_success_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    """Point-in-time view of one breaker for health reporting."""

    name: str
    state: CircuitState
    consecutive_failures: int
    failure_threshold: int
    cooldown_seconds: float
    opened_at: float | None
    time_until_retry: float | None
    stats: CircuitBreakerStats

    @property
    def is_healthy(self) -> bool:
        return self.state == CircuitState.CLOSED

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("stats")
        data["state"] = self.state.value
        data["is_healthy"] = self.is_healthy
        data.update(self.stats.to_dict())
        return data


class CircuitBreaker:
    """Circuit breaker guarding one provider endpoint.

    Args:
        failure_threshold: Consecutive failures that open the circuit.
        cooldown_seconds: Time spent OPEN before a trial call is admitted.
        name: Endpoint key, used in logs and snapshots.
        cooldown_multiplier: Applied to the cooldown after each failed
            trial; 1.0 keeps it fixed.
        max_cooldown_seconds: Ceiling for the escalated cooldown.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        name: str = "default",
        cooldown_multiplier: float = 1.0,
        max_cooldown_seconds: float | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be positive")
        if cooldown_multiplier < 1.0:
            raise ValueError("cooldown_multiplier must be at least 1.0")

        self.name = name
        self.failure_threshold = failure_threshold
        self._base_cooldown = cooldown_seconds
        self._cooldown_ceiling = max(max_cooldown_seconds or cooldown_seconds, cooldown_seconds)
        self._multiplier = cooldown_multiplier
        self._clock = clock

        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._cooldown = cooldown_seconds
        self._failures = 0
        self._opened_at: float | None = None
        self._trial_taken = False
        self._stats = CircuitBreakerStats()

    @classmethod
    def from_config(
        cls,
        name: str,
        config: CircuitBreakerConfig,
        clock: Clock = time.monotonic,
    ) -> CircuitBreaker:
        return cls(
            failure_threshold=config.failure_threshold,
            cooldown_seconds=config.cooldown_seconds,
            name=name,
            cooldown_multiplier=config.cooldown_multiplier,
            max_cooldown_seconds=config.max_cooldown_seconds,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Internals (caller holds the lock)
    # -------------------------------------------------------------------------

    def _move_to(self, state: CircuitState, reason: str, **fields: Any) -> None:
        previous = self._state
        if previous == state:
            return
        self._state = state
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._stats.opened += 1
        elif state == CircuitState.CLOSED:
            self._opened_at = None
            if previous == CircuitState.HALF_OPEN:
                self._stats.recoveries += 1
        self._trial_taken = False

        log = _logger.warning if state == CircuitState.OPEN else _logger.info
        log(
            "circuit_breaker.state_changed",
            endpoint=self.name,
            from_state=previous.value,
            to_state=state.value,
            reason=reason,
            **fields,
        )

    def _refresh(self) -> None:
        """Promote OPEN to HALF_OPEN once the cooldown has run out."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        elapsed = self._clock() - self._opened_at
        if elapsed >= self._cooldown:
            self._move_to(
                CircuitState.HALF_OPEN, "cooldown_elapsed", elapsed_seconds=round(elapsed, 2)
            )

    def _remaining(self) -> float | None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        return max(0.0, self._cooldown - (self._clock() - self._opened_at))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def cooldown_seconds(self) -> float:
        """Current cooldown, including escalation from failed trials."""
        return self._cooldown

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def state(self) -> CircuitState:
        return self.get_state()

    def get_state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    def can_execute(self) -> bool:
        """Whether try_acquire() would admit a call right now (reserves nothing)."""
        with self._lock:
            self._refresh()
            if self._state == CircuitState.HALF_OPEN:
                return not self._trial_taken
            return self._state == CircuitState.CLOSED

    def time_until_retry(self) -> float | None:
        """Seconds until a trial call is allowed; None unless OPEN."""
        with self._lock:
            return self._remaining()

    def snapshot(self) -> CircuitBreakerSnapshot:
        with self._lock:
            self._refresh()
            return CircuitBreakerSnapshot(
                name=self.name,
                state=self._state,
                consecutive_failures=self._failures,
                failure_threshold=self.failure_threshold,
                cooldown_seconds=self._cooldown,
                opened_at=self._opened_at,
                time_until_retry=self._remaining(),
                stats=replace(self._stats),
            )

    # -------------------------------------------------------------------------
    # Call accounting
    # -------------------------------------------------------------------------

    def try_acquire(self) -> bool:
        """Claim permission for one provider call.

        CLOSED always admits. HALF_OPEN admits the first caller only; the
        rest are rejected until that trial is recorded. OPEN rejects.
        """
        with self._lock:
            self._refresh()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and not self._trial_taken:
                self._trial_taken = True
                self._stats.trials += 1
                _logger.debug("circuit_breaker.trial_admitted", endpoint=self.name)
                return True
            self._stats.short_circuited += 1
            return False

    def release_trial(self) -> None:
        """Return an unsettled half-open permit, e.g. when the trial was cancelled.

        The circuit stays HALF_OPEN and the next caller gets the trial.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._trial_taken:
                self._trial_taken = False
                _logger.info("circuit_breaker.trial_released", endpoint=self.name)

    def record_success(self) -> None:
        """Clear the failure streak; a successful trial closes the circuit."""
        with self._lock:
            self._stats.successes += 1
            self._stats.last_success_at = time.time()
            self._failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._cooldown = self._base_cooldown
                self._move_to(CircuitState.CLOSED, "trial_succeeded")
            self._trial_taken = False

    def record_failure(self) -> None:
        """Extend the failure streak.

        A failed trial reopens the circuit with an escalated cooldown; in
        CLOSED the circuit opens once the streak reaches the threshold.
        """
        with self._lock:
            self._stats.failures += 1
            self._stats.last_failure_at = time.time()
            self._failures += 1

            if self._state == CircuitState.HALF_OPEN:
                self._cooldown = min(self._cooldown * self._multiplier, self._cooldown_ceiling)
                self._move_to(
                    CircuitState.OPEN, "trial_failed", cooldown_seconds=self._cooldown
                )
            elif self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold:
                self._move_to(
                    CircuitState.OPEN,
                    "failure_threshold_reached",
                    consecutive_failures=self._failures,
                )
            else:
                _logger.debug(
                    "circuit_breaker.failure_counted",
                    endpoint=self.name,
                    consecutive_failures=self._failures,
                    state=self._state.value,
                )
            self._trial_taken = False

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Close the circuit and forget the streak and escalation; stats stay."""
        with self._lock:
            self._failures = 0
            self._cooldown = self._base_cooldown
            self._move_to(CircuitState.CLOSED, "manual_reset")
            self._trial_taken = False

    def force_open(self) -> None:
        with self._lock:
            self._move_to(CircuitState.OPEN, "forced_open")

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker({self.name!r}, {self._state.value}, "
            f"{self._failures}/{self.failure_threshold} failures)"
        )


class CircuitBreakerRegistry:
    """Lazily built breakers, one per endpoint key.

    The registry lock only guards the key map; breakers for different
    endpoints never contend with each other.
    """

    def __init__(
        self,
        config: DiligenceConfig | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._config = config if config is not None else DiligenceConfig()
        self._clock = clock
        self._lock = Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, key: str) -> CircuitBreaker:
        with self._lock:
            if key not in self._breakers:
                self._breakers[key] = CircuitBreaker.from_config(
                    key, self._config.circuit_breaker_for(key), clock=self._clock
                )
            return self._breakers[key]

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._breakers)

    def snapshot(self) -> dict[str, CircuitBreakerSnapshot]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.snapshot() for breaker in breakers}

    def reset(self, key: str) -> CircuitBreakerSnapshot:
        """Close an endpoint's breaker, creating it if it was never used."""
        breaker = self.get(key)
        breaker.reset()
        return breaker.snapshot()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._breakers

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerSnapshot",
    "CircuitBreakerStats",
    "CircuitState",
]
