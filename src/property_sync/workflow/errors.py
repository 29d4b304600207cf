"""Errors raised by the workflow engine.

Collaborator exceptions are never wrapped: a failed execution re-raises the
last attempt's own exception. The types here cover failures the engine
detects itself.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for workflow engine errors."""


class WorkflowNotFound(WorkflowError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Workflow not registered: {name}")
        self.name = name


class WorkflowValidationError(WorkflowError, ValueError):
    """A definition was rejected at registration time."""


class StepDispatchError(WorkflowError):
    """A step could not be dispatched to its collaborator."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(message)
        self.action = action


class UnknownActionError(StepDispatchError):
    """No handler is registered for the action. Never retried."""

    def __init__(self, action: str) -> None:
        super().__init__(action, f"No handler registered for action: {action}")


class StepTimeoutError(StepDispatchError):
    def __init__(self, action: str, timeout: float) -> None:
        super().__init__(action, f"Action {action} timed out after {timeout:g}s")
        self.timeout = timeout


class ConditionEvaluationError(WorkflowError):
    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Cannot evaluate condition {expression!r}: {reason}")
        self.expression = expression
