"""Fire-and-forget side effects.

- XPAwarder: gamification award after a successful generation
- DetachedTaskRegistry: runs side effects outside the request, with its own
  error boundary, and drains them on shutdown
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

ITINERARY_CREATED_ACTION = "itinerary_created"


class XPAwarder(Protocol):
    """Protocol for awarding experience points."""

    async def award(self, user_id: str, action: str) -> None:
        """Award XP for an action. May raise; callers run it detached."""
        ...


class HttpXPAwarder:
    """POSTs awards to the gamification service, or logs when none is configured."""

    def __init__(
        self,
        award_url: str | None,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the awarder.

        Args:
            award_url: Gamification endpoint (None disables the HTTP call)
            timeout_seconds: Per-request timeout
            client: Optional httpx client (for testing with mocks)
        """
        self._award_url = award_url
        self._timeout_seconds = timeout_seconds
        self._client = client

    async def award(self, user_id: str, action: str) -> None:
        if not self._award_url:
            logger.info(
                f"XP award skipped (no endpoint): {action}",
                extra={"structured": {"user_id": user_id, "action": action}},
            )
            return

        client = self._client
        close_client = False
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_seconds)
            close_client = True

        try:
            response = await client.post(
                self._award_url, json={"userId": user_id, "action": action}
            )
            response.raise_for_status()
        finally:
            if close_client:
                await client.aclose()


class DetachedTaskRegistry:
    """Tracks detached side-effect tasks so they can be drained on shutdown."""

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self._timeout_seconds = timeout_seconds
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, work: Awaitable[None]) -> asyncio.Task[None]:
        """Run `work` detached. Failures are logged, never raised to the caller."""
        task = asyncio.ensure_future(self._guarded(name, work))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(self, name: str, work: Awaitable[None]) -> None:
        try:
            await asyncio.wait_for(work, timeout=self._timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                f"Side effect {name} failed: {type(e).__name__}",
                extra={"structured": {"side_effect": name, "error_reason": str(e)}},
            )

    async def drain(self) -> None:
        """Wait for every pending task (called on application shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
