from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

WORKFLOW_STARTED = "workflow.started"
WORKFLOW_PROGRESS = "workflow.progress"
WORKFLOW_COMPLETED = "workflow.completed"
WORKFLOW_ERROR = "workflow.error"
DUPLICATE_DETECTED = "duplicate.detected"

ALL_EVENTS = "*"


@dataclass(frozen=True, slots=True)
class EngineEvent:
    """A lifecycle signal observable at the engine boundary.

    Payload keys follow the published event contract (``executionId``,
    ``totalSteps`` ...), not Python naming.
    """

    type: str
    payload: dict[str, Any]


Listener = Callable[[EngineEvent], Any]


class EventBus:
    """Explicit listener registration for engine events.

    Listeners run inline in registration order. A coroutine returned by a
    listener is scheduled as a task on the running loop. Listener failures are
    logged and never reach the emitter.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._pending: set[asyncio.Task[Any]] = set()

    def on(self, event_type: str, listener: Listener) -> Callable[[], None]:
        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            self.off(event_type, listener)

        return unsubscribe

    def off(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event_type: str, payload: dict[str, Any]) -> EngineEvent:
        event = EngineEvent(type=event_type, payload=payload)
        for listener in [*self._listeners.get(event_type, []), *self._listeners.get(ALL_EVENTS, [])]:
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    task = asyncio.ensure_future(outcome)
                    self._pending.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception:
                logger.exception("Event listener failed", extra={"event": event_type})
        return event

    def _listener_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Async event listener failed",
                exc_info=task.exception(),
            )
