"""Cancellation tokens and per-role circuit breakers for provider calls.

- CancelToken: abort signal shared by the endpoint, orchestrator and progress channel
- CircuitBreaker: opens after N failures within a window, then admits a limited
  number of trial calls once the cool-down has passed
- BreakerRegistry: one breaker per provider role, owned by an orchestrator instance
"""

import asyncio
from collections import deque
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TypeVar

T = TypeVar("T")


class GenerationCancelledError(Exception):
    """Generation attempt was cancelled by the caller."""

    pass


class CancelToken:
    """Token for cancellation signaling, backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation to every holder of this token."""
        self._event.set()

    def throw_if_cancelled(self) -> None:
        """Raise GenerationCancelledError if cancelled."""
        if self.cancelled:
            raise GenerationCancelledError("generation cancelled")

    async def wait(self) -> None:
        """Block until cancelled."""
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token fires first.

        On cancellation the in-flight task is cancelled and abandoned, not awaited.
        """
        self.throw_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            watcher.cancel()

        if work.done():
            return work.result()

        work.cancel()
        raise GenerationCancelledError("generation cancelled")


class BreakerState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Breaker guarding one provider role.

    Closed: failures inside the rolling window are counted and reaching the
    threshold opens the breaker. Open: calls are refused until the cool-down has
    elapsed. Half-open: at most `half_open_max_calls` trial calls are admitted; a
    success closes the breaker and a failure reopens it.
    """

    name: str
    failure_threshold: int
    window_seconds: int
    half_open_seconds: int
    half_open_max_calls: int = 1
    state: BreakerState = BreakerState.CLOSED
    recent_failures: deque[datetime] = field(default_factory=deque)
    opened_at: datetime | None = None
    trial_calls: int = 0

    def state_at(self, now: datetime) -> BreakerState:
        """State as of `now`; an open breaker whose cool-down has passed turns half-open."""
        if self.state == BreakerState.OPEN and self.opened_at is not None:
            if now - self.opened_at >= timedelta(seconds=self.half_open_seconds):
                self.state = BreakerState.HALF_OPEN
                self.trial_calls = 0
        return self.state

    def allow_request(self, now: datetime) -> bool:
        """Admit one call. While half-open this reserves a trial slot."""
        state = self.state_at(now)
        if state == BreakerState.CLOSED:
            return True
        if state == BreakerState.HALF_OPEN and self.trial_calls < self.half_open_max_calls:
            self.trial_calls += 1
            return True
        return False

    def release(self) -> None:
        """Return the trial slot of an admitted call that ended without a verdict."""
        if self.state == BreakerState.HALF_OPEN and self.trial_calls > 0:
            self.trial_calls -= 1

    def record_success(self) -> None:
        if self.state == BreakerState.HALF_OPEN:
            self.state = BreakerState.CLOSED
            self.recent_failures.clear()
            self.opened_at = None
            self.trial_calls = 0

    def record_failure(self, now: datetime) -> None:
        """Count a failure. Never called for cancellations."""
        if self.state == BreakerState.HALF_OPEN:
            self._trip(now)
            return
        if self.state == BreakerState.OPEN:
            return

        horizon = now - timedelta(seconds=self.window_seconds)
        while self.recent_failures and self.recent_failures[0] <= horizon:
            self.recent_failures.popleft()
        self.recent_failures.append(now)

        if len(self.recent_failures) >= self.failure_threshold:
            self._trip(now)

    def _trip(self, now: datetime) -> None:
        self.state = BreakerState.OPEN
        self.opened_at = now
        self.trial_calls = 0


class BreakerRegistry:
    """Breakers keyed by role name, all built from one configuration."""

    def __init__(
        self,
        failure_threshold: int,
        window_seconds: int,
        half_open_seconds: int,
        half_open_max_calls: int = 1,
    ) -> None:
        self._config = {
            "failure_threshold": failure_threshold,
            "window_seconds": window_seconds,
            "half_open_seconds": half_open_seconds,
            "half_open_max_calls": half_open_max_calls,
        }
        self._by_name: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        """Get existing breaker or create a closed one."""
        breaker = self._by_name.get(name)
        if breaker is None:
            breaker = self._by_name[name] = CircuitBreaker(name=name, **self._config)
        return breaker

    def states(self, now: datetime | None = None) -> dict[str, str]:
        """Current state of every known breaker."""
        now = now or datetime.now()
        return {
            name: breaker.state_at(now).value for name, breaker in sorted(self._by_name.items())
        }
