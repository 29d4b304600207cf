"""FastAPI app factory.

Endpoints are thin wrappers over the orchestrator; the app's lifespan starts
and stops it, so schedules only fire while the server is up.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware

from property_sync import __version__
from property_sync.core.orchestrator import SyncOrchestrator
from property_sync.dedup.models import MatchCandidate
from property_sync.server.models import (
    ApiExecution,
    ApiMatch,
    ApiWorkflow,
    ExecutionRequest,
    MatchRequest,
    MatchResponse,
)
from property_sync.workflow.errors import WorkflowNotFound
from property_sync.workflow.models import Execution, WorkflowDefinition

logger = logging.getLogger(__name__)


def _to_api_workflow(definition: WorkflowDefinition) -> ApiWorkflow:
    return ApiWorkflow(
        name=definition.name,
        description=definition.description,
        trigger=definition.trigger.value,
        schedule=definition.schedule,
        steps=[step.action for step in definition.steps],
        error_handler=definition.error_handler.action if definition.error_handler else None,
    )


def _to_api_execution(execution: Execution) -> ApiExecution:
    return ApiExecution.model_validate(execution.to_json())


def _to_api_match(match: MatchCandidate) -> ApiMatch:
    return ApiMatch(
        id=match.id,
        strategy=match.strategy,
        confidence=match.confidence,
        matched_fields=list(match.matched_fields),
        entity=dict(match.entity),
    )


def create_app(orchestrator: SyncOrchestrator | None = None) -> FastAPI:
    orchestrator = orchestrator or SyncOrchestrator()
    engine = orchestrator.engine

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await orchestrator.start()
        try:
            yield
        finally:
            await orchestrator.stop()

    app = FastAPI(
        title="Property Sync Orchestrator",
        version=__version__,
        description="REST API over the sync workflows and duplicate detection.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=orchestrator.config.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health() -> dict[str, object]:
        return {"status": "ok", **orchestrator.status()}

    @app.get("/api/workflows", response_model=list[ApiWorkflow])
    def list_workflows() -> list[ApiWorkflow]:
        return [_to_api_workflow(d) for d in engine.definitions()]

    @app.post("/api/workflows/{name}/executions", response_model=ApiExecution)
    async def run_workflow(name: str, req: ExecutionRequest, response: Response) -> ApiExecution:
        try:
            execution = engine.start_execution(name, req.params)
        except WorkflowNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

        if not req.wait:
            response.status_code = status.HTTP_202_ACCEPTED
            return _to_api_execution(execution)

        finished = await engine.wait(execution.id)
        return _to_api_execution(finished or execution)

    @app.get("/api/executions/{execution_id}", response_model=ApiExecution)
    def get_execution(execution_id: str) -> ApiExecution:
        execution = engine.get_execution(execution_id)
        if execution is None:
            raise HTTPException(status_code=404, detail="Execution not found")
        return _to_api_execution(execution)

    @app.post("/api/deduplication/matches", response_model=MatchResponse)
    async def find_matches(req: MatchRequest) -> MatchResponse:
        matches = await orchestrator.find_matches(req.entity)
        return MatchResponse(
            duplicate=bool(matches),
            confidence=matches[0].confidence if matches else 0.0,
            matches=[_to_api_match(m) for m in matches],
        )

    return app
