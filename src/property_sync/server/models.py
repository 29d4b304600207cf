"""Pydantic models for the REST server."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ExecutionStatus = Literal["running", "completed", "failed"]


class ApiWorkflow(BaseModel):
    name: str
    description: str
    trigger: str
    schedule: str | None = None
    steps: list[str]
    error_handler: str | None = None


class ExecutionRequest(BaseModel):
    params: dict[str, Any] = Field(default_factory=dict)
    wait: bool = Field(default=True, description="Respond after the run finishes")


class ApiError(BaseModel):
    type: str
    message: str


class ApiExecution(BaseModel):
    id: str
    workflow: str
    status: ExecutionStatus
    params: dict[str, Any]

    started_at: datetime
    ended_at: datetime | None = None

    current_step: int
    total_steps: int
    results: list[Any] = Field(default_factory=list)
    skipped_steps: list[int] = Field(default_factory=list)

    error: ApiError | None = None


class MatchRequest(BaseModel):
    entity: dict[str, Any]


class ApiMatch(BaseModel):
    id: str
    strategy: str
    confidence: float
    matched_fields: list[str]
    entity: dict[str, Any]


class MatchResponse(BaseModel):
    duplicate: bool
    confidence: float
    matches: list[ApiMatch] = Field(default_factory=list)
