from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from .errors import UnknownActionError, WorkflowValidationError
from .models import ACTION_PATTERN

logger = logging.getLogger(__name__)

ActionHandler = Callable[[Any], Any]


class Capability(Protocol):
    """A collaborator exposing a fixed table of operations.

    The registry is agnostic to which collaborator implements which
    capability; it only sees ``capability`` and the operation table.
    """

    capability: str

    def operations(self) -> Mapping[str, ActionHandler]: ...


class ActionRegistry:
    """Maps ``capability.operation`` names to handlers decided at startup.

    A handler receives the resolved parameter object and returns a result, or
    an awaitable of one. Synchronous handlers run in a worker thread so a
    blocking client never stalls the event loop.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, action: str, handler: ActionHandler, *, replace: bool = False) -> None:
        if not ACTION_PATTERN.match(action):
            raise WorkflowValidationError(
                f"action must look like 'capability.operation', got {action!r}"
            )
        if action in self._handlers and not replace:
            raise WorkflowValidationError(f"Action already registered: {action}")
        self._handlers[action] = handler

    def register_capability(self, provider: Capability, *, replace: bool = False) -> list[str]:
        registered: list[str] = []
        for operation, handler in provider.operations().items():
            action = f"{provider.capability}.{operation}"
            self.register(action, handler, replace=replace)
            registered.append(action)
        logger.info(
            "Capability registered",
            extra={"capability": provider.capability, "operations": len(registered)},
        )
        return registered

    def unregister_capability(self, capability: str) -> None:
        prefix = f"{capability}."
        for action in [a for a in self._handlers if a.startswith(prefix)]:
            del self._handlers[action]

    def has(self, action: str) -> bool:
        return action in self._handlers

    def has_capability(self, capability: str) -> bool:
        prefix = f"{capability}."
        return any(a.startswith(prefix) for a in self._handlers)

    def capabilities(self) -> list[str]:
        return sorted({a.split(".", 1)[0] for a in self._handlers})

    def actions(self) -> list[str]:
        return sorted(self._handlers)

    def resolve(self, action: str) -> ActionHandler:
        try:
            return self._handlers[action]
        except KeyError:
            raise UnknownActionError(action) from None

    async def dispatch(self, action: str, params: Any) -> Any:
        handler = self.resolve(action)
        if inspect.iscoroutinefunction(handler):
            return await handler(params)
        result = await asyncio.to_thread(handler, params)
        if inspect.isawaitable(result):
            return await result
        return result
