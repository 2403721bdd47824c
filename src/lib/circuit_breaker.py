"""
Circuit breaker for outbound delivery channels.

A channel (push, whatsapp, sms) that keeps failing is short-circuited for
a recovery period so the dispatcher stops burning attempts on sends that
cannot succeed right now. Short-circuited sends stay pending and are picked
up again by a later dispatch run.

States:
- CLOSED: Normal operation, calls pass through.
- OPEN: Channel is unhealthy, calls are rejected immediately.
- HALF_OPEN: Testing recovery, a limited number of calls allowed.

Usage:
    board = BreakerBoard(failure_threshold=5, recovery_timeout=300.0)
    breaker = board.for_channel("whatsapp")
    if await breaker.allow_request():
        result = await adapter.send(...)
        if result.success:
            await breaker.record_success()
        else:
            await breaker.record_failure()
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    """Possible states for a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker guarding one delivery channel.

    Tracks consecutive failures and transitions between CLOSED, OPEN and
    HALF_OPEN. State changes are serialized with an asyncio.Lock.

    Args:
        name: Identifier for the protected channel (used in logging).
        failure_threshold: Consecutive failures before opening.
        recovery_timeout: Seconds to wait in OPEN before transitioning to HALF_OPEN.
        half_open_max_calls: Number of test calls allowed in HALF_OPEN state.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 300.0,
        half_open_max_calls: int = 1,
        clock=time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls

        self._clock = clock
        self._state: CircuitState = CircuitState.CLOSED
        self._failure_count: int = 0
        self._half_open_calls: int = 0
        self._last_failure_time: float | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Return the current circuit state."""
        return self._state

    @property
    def failure_count(self) -> int:
        """Return the current consecutive failure count."""
        return self._failure_count

    @property
    def rejecting(self) -> bool:
        """True while allow_request() would refuse without letting a trial call through."""
        if self._state == CircuitState.OPEN:
            return not self._should_attempt_recovery()
        if self._state == CircuitState.HALF_OPEN:
            return self._half_open_calls >= self.half_open_max_calls
        return False

    def _should_attempt_recovery(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time >= self.recovery_timeout

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.info(
            "Delivery breaker '%s' state transition: %s -> %s",
            self.name,
            old_state.value,
            new_state.value,
        )

    async def allow_request(self) -> bool:
        """
        Check whether a delivery on this channel should be attempted.

        Returns:
            True if the call is allowed, False if it should be skipped.
        """
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._should_attempt_recovery():
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._half_open_calls = 1
                    return True
                return False

            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    async def record_success(self) -> None:
        """Record a successful delivery. Closes the circuit if HALF_OPEN."""
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
                self._half_open_calls = 0
            self._failure_count = 0

    async def record_failure(self) -> None:
        """Record a failed delivery. May open the circuit if threshold is reached."""
        async with self._lock:
            self._last_failure_time = self._clock()
            self._failure_count += 1

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    "Delivery breaker '%s' failed in HALF_OPEN. Reopening circuit.",
                    self.name,
                )
                self._transition_to(CircuitState.OPEN)
                self._half_open_calls = 0

            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                logger.warning(
                    "Delivery breaker '%s' failure threshold reached (%d/%d). Opening circuit.",
                    self.name,
                    self._failure_count,
                    self.failure_threshold,
                )
                self._transition_to(CircuitState.OPEN)


class BreakerBoard:
    """One lazily created CircuitBreaker per delivery channel."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 300.0,
        clock=time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def for_channel(self, channel: str) -> CircuitBreaker:
        """Get or create the breaker for a channel."""
        breaker = self._breakers.get(channel)
        if breaker is None:
            breaker = CircuitBreaker(
                name=f"delivery:{channel}",
                failure_threshold=self._failure_threshold,
                recovery_timeout=self._recovery_timeout,
                clock=self._clock,
            )
            self._breakers[channel] = breaker
        return breaker

    def short_circuited(self) -> frozenset[str]:
        """Channels whose breaker is currently rejecting calls."""
        return frozenset(channel for channel, breaker in self._breakers.items() if breaker.rejecting)

    def snapshot(self) -> dict[str, str]:
        """Return channel -> state for monitoring."""
        return {channel: breaker.state.value for channel, breaker in self._breakers.items()}


__all__ = [
    "BreakerBoard",
    "CircuitBreaker",
    "CircuitState",
]
