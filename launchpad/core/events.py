"""Progress events for Server-Sent Events (SSE)."""

import asyncio
import inspect
from typing import Any, AsyncIterator, Callable
from uuid import UUID

from launchpad.models.deployment import EventState, ProgressEvent
from launchpad.utils.logging import get_logger

logger = get_logger(__name__)


class ProgressReporter:
    """Unidirectional stream of step-level progress for one deployment.

    Events go to an optional callback (sync or async) and to every
    subscriber queue. Late subscribers receive the history first. A
    subscriber that stops reading never affects the pipeline.
    """

    def __init__(self, callback: Callable[[ProgressEvent], Any] | None = None):
        self._callback = callback
        self._history: list[ProgressEvent] = []
        self._subscribers: list[asyncio.Queue[ProgressEvent]] = []

    @property
    def history(self) -> list[ProgressEvent]:
        return list(self._history)

    @property
    def finished(self) -> bool:
        return bool(self._history) and self._history[-1].is_terminal

    async def emit(
        self,
        step: str,
        status: str,
        icon: str = "",
        progress: int = 0,
        state: EventState = EventState.INFO,
        result: dict[str, Any] | None = None,
    ) -> ProgressEvent:
        """Publish an event and return it."""
        event = ProgressEvent(
            step=step,
            status=status,
            icon=icon,
            progress=max(0, min(100, progress)),
            state=state,
            result=result,
        )
        self._history.append(event)

        for queue in list(self._subscribers):
            queue.put_nowait(event)

        if self._callback is not None:
            try:
                outcome = self._callback(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                # A broken consumer must not break the deployment
                logger.warning("progress.callback_failed", step=step, exc_info=True)

        return event

    def subscribe(self) -> asyncio.Queue[ProgressEvent]:
        """Subscribe to events, starting with everything already emitted."""
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        for event in self._history:
            queue.put_nowait(event)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ProgressEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        """Yield events until the terminal ``complete`` event."""
        queue = self.subscribe()
        try:
            while True:
                event = await queue.get()
                yield event
                if event.is_terminal:
                    break
        finally:
            self.unsubscribe(queue)


class EventBus:
    """Registry of progress reporters keyed by deployment id."""

    def __init__(self):
        self._reporters: dict[UUID, ProgressReporter] = {}

    def open(
        self,
        deployment_id: UUID,
        callback: Callable[[ProgressEvent], Any] | None = None,
    ) -> ProgressReporter:
        """Create (or return) the reporter for a deployment."""
        if deployment_id not in self._reporters:
            self._reporters[deployment_id] = ProgressReporter(callback)
        return self._reporters[deployment_id]

    def get(self, deployment_id: UUID) -> ProgressReporter | None:
        return self._reporters.get(deployment_id)

    def close(self, deployment_id: UUID) -> None:
        self._reporters.pop(deployment_id, None)


# Singleton instance
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the event bus singleton."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
