"""Progress channels for generation attempts.

A channel enforces event ordering for every consumer:
- exactly one `start`, and it comes first
- nothing after a terminal `complete`/`error`
- `percent` never decreases (lower values are raised to the last one seen)

Buffered channels record events for the JSON endpoint; streaming channels turn
them into SSE frames.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from backend.app.models.events import TERMINAL_EVENT_TYPES, ProgressEvent
from backend.app.orchestration.resilience import CancelToken

logger = logging.getLogger(__name__)

KEEP_ALIVE_FRAME = ": keep-alive\n\n"


class ProgressOrderError(Exception):
    """Event emitted out of order (missing start, duplicate start, or after terminal)."""

    pass


def encode_sse(event: ProgressEvent) -> str:
    """Frame one event as a server-sent event."""
    return f"data: {event.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


class ProgressChannel(ABC):
    """Ordered, monotonic progress sink for one generation attempt."""

    def __init__(self, cancel_token: CancelToken | None = None) -> None:
        self._cancel_token = cancel_token
        self._started = False
        self._terminated = False
        self._closed = False
        self._last_percent = 0

    @property
    def terminated(self) -> bool:
        """Whether a terminal event has been emitted."""
        return self._terminated

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ProgressEvent) -> bool:
        """Deliver an event.

        Returns:
            True if delivered, False if dropped because the channel is closed
            or its attempt was cancelled

        Raises:
            ProgressOrderError: Start/terminal ordering violated
        """
        if self._closed or (self._cancel_token is not None and self._cancel_token.cancelled):
            return False

        if self._terminated:
            raise ProgressOrderError(f"'{event.type}' emitted after terminal event")
        if event.type == "start":
            if self._started:
                raise ProgressOrderError("'start' emitted twice")
            self._started = True
        elif not self._started:
            raise ProgressOrderError(f"'{event.type}' emitted before 'start'")

        if event.percent is not None:
            if event.percent < self._last_percent:
                event = event.model_copy(update={"percent": self._last_percent})
            self._last_percent = event.percent

        if event.type in TERMINAL_EVENT_TYPES:
            self._terminated = True

        self._deliver(event)
        return True

    def close(self) -> None:
        """Stop accepting events (consumer went away or the attempt ended)."""
        if not self._closed:
            self._closed = True
            self._on_close()

    @abstractmethod
    def _deliver(self, event: ProgressEvent) -> None:
        """Hand an accepted event to the consumer."""

    def _on_close(self) -> None:
        pass


class BufferedProgressChannel(ProgressChannel):
    """Records events in order; the buffered endpoint reads the terminal one."""

    def __init__(self, cancel_token: CancelToken | None = None) -> None:
        super().__init__(cancel_token)
        self.events: list[ProgressEvent] = []

    def _deliver(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def terminal_event(self) -> ProgressEvent | None:
        if self.events and self.events[-1].type in TERMINAL_EVENT_TYPES:
            return self.events[-1]
        return None


class StreamingProgressChannel(ProgressChannel):
    """Queue-backed channel consumed as SSE frames."""

    def __init__(
        self,
        cancel_token: CancelToken | None = None,
        heartbeat_seconds: float = 30.0,
    ) -> None:
        super().__init__(cancel_token)
        self._heartbeat_seconds = heartbeat_seconds
        # None marks close without a terminal event
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()

    def _deliver(self, event: ProgressEvent) -> None:
        self._queue.put_nowait(event)

    def _on_close(self) -> None:
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        """Yield SSE frames until a terminal event or close.

        Emits a keep-alive comment frame whenever no event arrives within the
        heartbeat interval.
        """
        while True:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=self._heartbeat_seconds)
            except TimeoutError:
                yield KEEP_ALIVE_FRAME
                continue

            if event is None:
                return

            yield encode_sse(event)
            if event.type in TERMINAL_EVENT_TYPES:
                return
