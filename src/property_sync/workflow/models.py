"""Workflow definitions and execution records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

ACTION_PATTERN = re.compile(r"^[A-Za-z_][\w-]*\.[A-Za-z_]\w*$")


class TriggerKind(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"


class BackoffKind(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryPolicy(BaseModel):
    """Step-level retry policy.

    Delays are in seconds. ``delay_for(n)`` is the sleep after the n-th failed
    attempt (n >= 1).
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    initial_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float | None = Field(default=None, ge=0.0)

    def delay_for(self, failed_attempts: int) -> float:
        n = max(failed_attempts, 1)
        if self.backoff is BackoffKind.FIXED:
            delay = self.initial_delay
        elif self.backoff is BackoffKind.LINEAR:
            delay = self.initial_delay * n
        else:
            delay = self.initial_delay * 2 ** (n - 1)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


class WorkflowStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: str
    params: Any = Field(default_factory=dict)
    condition: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    max_attempts: int | None = Field(default=None, ge=1)

    @field_validator("action")
    @classmethod
    def _check_action(cls, value: str) -> str:
        value = value.strip()
        if not ACTION_PATTERN.match(value):
            raise ValueError(f"action must look like 'capability.operation', got {value!r}")
        return value

    @property
    def capability(self) -> str:
        return self.action.split(".", 1)[0]

    @property
    def operation(self) -> str:
        return self.action.split(".", 1)[1]


def _coerce_step(value: object) -> object:
    # Existing definitions list bare action strings.
    if isinstance(value, str):
        return {"action": value}
    return value


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    schedule: str | None = None
    trigger: TriggerKind = TriggerKind.MANUAL
    steps: list[WorkflowStep] = Field(min_length=1)
    error_handler: WorkflowStep | None = None
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)

    @field_validator("steps", mode="before")
    @classmethod
    def _coerce_steps(cls, value: object) -> object:
        if isinstance(value, list):
            return [_coerce_step(v) for v in value]
        return value

    @field_validator("error_handler", mode="before")
    @classmethod
    def _coerce_error_handler(cls, value: object) -> object:
        return _coerce_step(value)


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class Execution:
    """One run of a workflow. Owned by the engine for its lifetime."""

    id: str
    workflow: str
    params: dict[str, Any]
    started_at: datetime
    total_steps: int
    status: ExecutionStatus = ExecutionStatus.RUNNING
    ended_at: datetime | None = None
    current_step: int = 0
    results: list[Any] = field(default_factory=list)
    step_results: dict[int, Any] = field(default_factory=dict)
    skipped_steps: list[int] = field(default_factory=list)
    error: BaseException | None = None

    @property
    def duration(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def finished(self) -> bool:
        return self.status is not ExecutionStatus.RUNNING

    def advance_to(self, index: int) -> None:
        if index < self.current_step:
            raise ValueError(f"Execution {self.id} cannot move back to step {index}")
        self.current_step = index

    def record(self, index: int, result: Any) -> None:
        self.results.append(result)
        self.step_results[index] = result

    def complete(self, now: datetime) -> None:
        self.status = ExecutionStatus.COMPLETED
        self.ended_at = now

    def fail(self, error: BaseException, now: datetime) -> None:
        self.status = ExecutionStatus.FAILED
        self.error = error
        self.ended_at = now

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "id": self.id,
            "workflow": self.workflow,
            "params": self.params,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "results": self.results,
            "skipped_steps": list(self.skipped_steps),
        }
        if self.error is not None:
            out["error"] = {"type": type(self.error).__name__, "message": str(self.error)}
        return out
