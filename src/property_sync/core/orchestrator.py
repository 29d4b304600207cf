"""Main orchestrator implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from property_sync.core.config import SyncConfig
from property_sync.dedup.engine import DeduplicationEngine
from property_sync.dedup.models import MatchCandidate
from property_sync.dedup.store import InMemoryCandidateStore
from property_sync.integrations.base import Integration
from property_sync.integrations.dry_run import DryRunFieldService, DryRunPropertyManagement
from property_sync.integrations.notifications import WebhookNotifier
from property_sync.integrations.reconciliation import Reconciliation
from property_sync.integrations.sync import WorkOrderSync
from property_sync.workflow.actions import ActionRegistry
from property_sync.workflow.catalog import builtin_workflows, last_month
from property_sync.workflow.engine import WorkflowEngine
from property_sync.workflow.events import (
    DUPLICATE_DETECTED,
    WORKFLOW_COMPLETED,
    WORKFLOW_ERROR,
    WORKFLOW_STARTED,
    EngineEvent,
    EventBus,
)
from property_sync.workflow.models import BackoffKind, Execution, RetryPolicy
from property_sync.workflow.policy import Sleep

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Builds every component from configuration and owns their lifecycle.

    In dry-run mode the platform adapters are in-memory stand-ins and every
    record they create is indexed into the candidate store. Otherwise live
    clients are attached with :meth:`register_integration` before
    :meth:`start`.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        store: InMemoryCandidateStore | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or SyncConfig()
        self.config.setup_logging()

        logger.info("Initializing sync orchestrator", extra={"dry_run": self.config.dry_run})

        self.events = EventBus()
        self.store = store if store is not None else InMemoryCandidateStore()
        self.dedup = DeduplicationEngine.from_settings(
            self.config.deduplication, self.store, events=self.events
        )

        retry = self.config.retry
        self.registry = ActionRegistry()
        self.engine = WorkflowEngine(
            self.registry,
            events=self.events,
            default_step_timeout=self.config.step_timeout_seconds,
            default_retry_policy=RetryPolicy(
                max_attempts=retry.max_attempts,
                backoff=BackoffKind(retry.backoff),
                initial_delay=retry.initial_delay_seconds,
                max_delay=retry.max_delay_seconds,
            ),
            execution_retention=self.config.execution_retention_seconds,
            sleep=sleep,
            template_globals={
                "lastMonth": last_month,
                "config": {"financeTeam": self.config.parsed_finance_team()},
            },
        )

        self.integrations: dict[str, Integration] = {}
        self.registry.register_capability(self.dedup)
        if self.config.dry_run:
            property_management = DryRunPropertyManagement()
            field_service = DryRunFieldService(self.store)
            self.register_integration(property_management)
            self.register_integration(field_service)
            self.register_integration(WorkOrderSync(self.dedup, field_service, property_management))
        self.register_integration(Reconciliation())
        self.register_integration(WebhookNotifier(self.config.notifications_webhook_url))

        for definition in builtin_workflows():
            self.engine.register(definition)

        self._install_listeners()
        logger.info("Orchestrator initialized", extra={"workflows": len(self.engine.definitions())})

    def register_integration(self, integration: Integration, *, replace: bool = False) -> None:
        if replace:
            self.registry.unregister_capability(integration.capability)
        self.registry.register_capability(integration)
        self.integrations[integration.capability] = integration

    def get_integration(self, capability: str) -> Integration | None:
        return self.integrations.get(capability)

    def _install_listeners(self) -> None:
        self.events.on(WORKFLOW_STARTED, _log_event(logging.INFO, "Workflow run started"))
        self.events.on(WORKFLOW_COMPLETED, _log_event(logging.INFO, "Workflow run completed"))
        self.events.on(WORKFLOW_ERROR, _log_event(logging.ERROR, "Workflow run failed"))
        self.events.on(DUPLICATE_DETECTED, _log_event(logging.WARNING, "Duplicate record detected"))

    async def start(self) -> None:
        for integration in self.integrations.values():
            integration.connect()
        await self.engine.start()
        logger.info("Orchestrator started", extra={"schedules": self.engine.scheduler.bindings()})

    async def stop(self) -> None:
        await self.engine.stop()
        for integration in self.integrations.values():
            integration.close()
        logger.info("Orchestrator stopped")

    async def execute(self, name: str, params: Mapping[str, Any] | None = None) -> Execution:
        return await self.engine.execute(name, params)

    async def find_matches(self, entity: Mapping[str, Any]) -> list[MatchCandidate]:
        return await self.dedup.find_matches(entity)

    def status(self) -> dict[str, Any]:
        return {
            "dry_run": self.config.dry_run,
            "integrations": sorted(self.integrations),
            "capabilities": self.registry.capabilities(),
            "workflows": [d.name for d in self.engine.definitions()],
            "schedules": self.engine.scheduler.bindings(),
            "executions": len(self.engine.executions()),
        }


def _log_event(level: int, message: str) -> Callable[[EngineEvent], None]:
    def listener(event: EngineEvent) -> None:
        payload = event.payload
        extra: dict[str, Any] = {"event": event.type}
        for key in ("executionId", "workflow", "duration", "confidence"):
            if key in payload:
                extra[key] = payload[key]
        if "error" in payload:
            extra["error"] = repr(payload["error"])
        logger.log(level, message, extra=extra)

    return listener
