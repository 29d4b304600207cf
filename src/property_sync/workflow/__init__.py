"""Workflow orchestration.

Definitions are registered with a :class:`WorkflowEngine`, which runs their
steps in order through an :class:`ActionRegistry`, retrying failed steps per
the workflow's retry policy and firing scheduled workflows from cron
expressions.
"""

from property_sync.workflow.actions import ActionRegistry, Capability
from property_sync.workflow.engine import WorkflowEngine
from property_sync.workflow.errors import (
    ConditionEvaluationError,
    StepDispatchError,
    StepTimeoutError,
    UnknownActionError,
    WorkflowError,
    WorkflowNotFound,
    WorkflowValidationError,
)
from property_sync.workflow.events import EngineEvent, EventBus
from property_sync.workflow.models import (
    Execution,
    ExecutionStatus,
    RetryPolicy,
    WorkflowDefinition,
    WorkflowStep,
)

__all__ = [
    "ActionRegistry",
    "Capability",
    "ConditionEvaluationError",
    "EngineEvent",
    "EventBus",
    "Execution",
    "ExecutionStatus",
    "RetryPolicy",
    "StepDispatchError",
    "StepTimeoutError",
    "UnknownActionError",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowNotFound",
    "WorkflowStep",
    "WorkflowValidationError",
]
