"""Workflow execution engine.

The engine owns every piece of mutable workflow state: registered
definitions, live and recently finished executions, background tasks and the
scheduler. One instance lives for the lifetime of the process; ``stop()``
tears all of it down.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError
from tenacity import RetryCallState

from .actions import ActionRegistry
from .conditions import DEFAULT_ROOTS, Condition, compile_condition
from .errors import StepTimeoutError, WorkflowNotFound, WorkflowValidationError
from .events import WORKFLOW_COMPLETED, WORKFLOW_ERROR, WORKFLOW_PROGRESS, WORKFLOW_STARTED, EventBus
from .models import Execution, RetryPolicy, TriggerKind, WorkflowDefinition, WorkflowStep
from .policy import Sleep, build_retrying
from .scheduler import CronSchedule, Scheduler, Trigger
from .templates import resolve_template

logger = logging.getLogger(__name__)

SchedulerFactory = Callable[[Trigger], Scheduler]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class _Registered:
    definition: WorkflowDefinition
    conditions: tuple[Condition | None, ...]
    handler_condition: Condition | None


class WorkflowEngine:
    """Runs registered workflows.

    ``template_globals`` adds roots to the template and condition context
    next to ``params``, ``results`` and ``steps``. A callable value is called
    with the execution's start time, so date windows such as ``lastMonth``
    stay fixed for the whole run.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        *,
        events: EventBus | None = None,
        scheduler_factory: SchedulerFactory = Scheduler,
        default_step_timeout: float = 30.0,
        default_retry_policy: RetryPolicy | None = None,
        execution_retention: float = 300.0,
        sleep: Sleep = asyncio.sleep,
        now: Callable[[], datetime] = _utc_now,
        template_globals: Mapping[str, Any] | None = None,
    ) -> None:
        self.registry = registry
        self.events = events or EventBus()
        self.scheduler = scheduler_factory(self._on_schedule)
        self._default_step_timeout = default_step_timeout
        self._default_retry_policy = default_retry_policy or RetryPolicy()
        self._retention = timedelta(seconds=execution_retention)
        self._sleep = sleep
        self._now = now
        self._globals = dict(template_globals or {})
        self._roots = DEFAULT_ROOTS | set(self._globals)

        self._workflows: dict[str, _Registered] = {}
        self._executions: dict[str, Execution] = {}
        self._background: dict[str, asyncio.Task[Execution]] = {}

    # Definitions

    def register(self, definition: WorkflowDefinition | Mapping[str, Any]) -> WorkflowDefinition:
        """Validate, normalize and store a definition.

        Re-registering a name replaces the previous definition and its
        schedule binding. Returns the stored (normalized) definition.
        """

        if not isinstance(definition, WorkflowDefinition):
            try:
                definition = WorkflowDefinition.model_validate(definition)
            except ValidationError as e:
                raise WorkflowValidationError(str(e)) from e

        name = definition.name
        if definition.trigger is TriggerKind.SCHEDULED and not definition.schedule:
            raise WorkflowValidationError(f"Workflow {name!r} is scheduled but has no schedule")
        if definition.schedule:
            CronSchedule.parse(definition.schedule)

        if "retry_policy" not in definition.model_fields_set:
            definition = definition.model_copy(update={"retry_policy": self._default_retry_policy})

        steps = [self._normalize_step(name, step, definition.retry_policy) for step in definition.steps]
        conditions = tuple(self._compile(name, step) for step in steps)

        handler = definition.error_handler
        if handler is not None:
            handler = self._normalize_step(name, handler, definition.retry_policy)
        definition = definition.model_copy(update={"steps": steps, "error_handler": handler})

        self._workflows[name] = _Registered(
            definition=definition,
            conditions=conditions,
            handler_condition=self._compile(name, handler) if handler else None,
        )
        if definition.schedule:
            self.scheduler.bind(name, definition.schedule)
        else:
            self.scheduler.unbind(name)

        logger.info(
            "Workflow registered",
            extra={"workflow": name, "steps": len(steps), "schedule": definition.schedule},
        )
        return definition

    def unregister(self, name: str) -> bool:
        self.scheduler.unbind(name)
        return self._workflows.pop(name, None) is not None

    def get(self, name: str) -> WorkflowDefinition:
        return self._lookup(name).definition

    def definitions(self) -> list[WorkflowDefinition]:
        return [registered.definition for registered in self._workflows.values()]

    def _lookup(self, name: str) -> _Registered:
        try:
            return self._workflows[name]
        except KeyError:
            raise WorkflowNotFound(name) from None

    def _normalize_step(self, workflow: str, step: WorkflowStep, policy: RetryPolicy) -> WorkflowStep:
        self._check_action(workflow, step.action)
        return step.model_copy(
            update={
                "timeout": step.timeout or self._default_step_timeout,
                "max_attempts": step.max_attempts or policy.max_attempts,
            }
        )

    def _check_action(self, workflow: str, action: str) -> None:
        if self.registry.has(action):
            return
        capability = action.split(".", 1)[0]
        if self.registry.has_capability(capability):
            raise WorkflowValidationError(
                f"Workflow {workflow!r}: capability {capability!r} has no operation for {action!r}"
            )
        logger.warning(
            "Action capability not registered yet",
            extra={"workflow": workflow, "action": action},
        )

    def _compile(self, workflow: str, step: WorkflowStep) -> Condition | None:
        if step.condition is None:
            return None
        try:
            return compile_condition(step.condition, roots=self._roots)
        except WorkflowValidationError as e:
            raise WorkflowValidationError(f"Workflow {workflow!r}: {e}") from e

    # Executions

    async def execute(self, name: str, params: Mapping[str, Any] | None = None) -> Execution:
        """Run ``name`` to completion and return its execution record.

        Raises :class:`WorkflowNotFound` for an unknown name. When a step
        exhausts its attempts the last attempt's exception is raised as-is.
        """

        registered = self._lookup(name)
        execution = self._create_execution(registered, params)
        return await self._run(registered, execution)

    def start_execution(self, name: str, params: Mapping[str, Any] | None = None) -> Execution:
        """Run ``name`` in a background task and return the live record at once."""

        registered = self._lookup(name)
        execution = self._create_execution(registered, params)
        task = asyncio.get_running_loop().create_task(
            self._run(registered, execution), name=f"execution:{execution.id}"
        )
        self._background[execution.id] = task
        task.add_done_callback(lambda t: self._background_done(execution.id, t))
        return execution

    async def wait(self, execution_id: str) -> Execution | None:
        """Wait for a background execution; failures are reflected on the record."""

        task = self._background.get(execution_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get_execution(execution_id)

    def get_execution(self, execution_id: str) -> Execution | None:
        self._purge_expired()
        return self._executions.get(execution_id)

    def executions(self) -> list[Execution]:
        self._purge_expired()
        return list(self._executions.values())

    def _create_execution(self, registered: _Registered, params: Mapping[str, Any] | None) -> Execution:
        self._purge_expired()
        definition = registered.definition
        execution = Execution(
            id=uuid.uuid4().hex,
            workflow=definition.name,
            params=dict(params or {}),
            started_at=self._now(),
            total_steps=len(definition.steps),
        )
        self._executions[execution.id] = execution
        return execution

    def _purge_expired(self) -> None:
        cutoff = self._now() - self._retention
        expired = [
            execution_id
            for execution_id, execution in self._executions.items()
            if execution.ended_at is not None and execution.ended_at < cutoff
        ]
        for execution_id in expired:
            del self._executions[execution_id]

    def _context(self, execution: Execution) -> dict[str, Any]:
        return {
            **{
                key: value(execution.started_at) if callable(value) else value
                for key, value in self._globals.items()
            },
            "params": execution.params,
            "results": execution.results,
            "steps": execution.step_results,
        }

    async def _run(self, registered: _Registered, execution: Execution) -> Execution:
        definition = registered.definition
        log_extra = {"workflow": definition.name, "execution_id": execution.id}
        self.events.emit(
            WORKFLOW_STARTED,
            {"executionId": execution.id, "workflow": definition.name, "params": execution.params},
        )
        logger.info("Workflow started", extra=log_extra)

        for index, step in enumerate(definition.steps):
            execution.advance_to(index)
            try:
                ran, result = await self._run_step(
                    execution, definition, step, registered.conditions[index], index
                )
            except asyncio.CancelledError as e:
                execution.fail(e, self._now())
                logger.warning("Workflow cancelled", extra={**log_extra, "step": index})
                raise
            except Exception as e:
                await self._fail(registered, execution, index, e)
                raise

            if not ran:
                execution.skipped_steps.append(index)
                logger.info("Step skipped", extra={**log_extra, "step": index, "action": step.action})
                continue

            execution.record(index, result)
            self.events.emit(
                WORKFLOW_PROGRESS,
                {
                    "executionId": execution.id,
                    "workflow": definition.name,
                    "step": index,
                    "totalSteps": execution.total_steps,
                    "result": result,
                },
            )

        execution.advance_to(execution.total_steps)
        execution.complete(self._now())
        self.events.emit(
            WORKFLOW_COMPLETED,
            {
                "executionId": execution.id,
                "workflow": definition.name,
                "duration": execution.duration,
                "results": list(execution.results),
            },
        )
        logger.info("Workflow completed", extra={**log_extra, "duration": execution.duration})
        return execution

    async def _run_step(
        self,
        execution: Execution,
        definition: WorkflowDefinition,
        step: WorkflowStep,
        condition: Condition | None,
        index: int,
    ) -> tuple[bool, Any]:
        attempts = 0
        result: Any = None
        try:
            context = self._context(execution)
            if condition is not None and not condition.evaluate(context):
                return False, None
            params = resolve_template(step.params, context)

            retrying = build_retrying(
                definition.retry_policy,
                max_attempts=step.max_attempts,
                sleep=self._sleep,
                before_sleep=lambda state: self._log_retry(execution, step, index, state),
            )
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await self._dispatch(step, params)
        except Exception as e:
            e.add_note(
                f"workflow {execution.workflow!r} step {index} ({step.action}) "
                f"failed after {attempts} attempt(s)"
            )
            raise
        return True, result

    async def _dispatch(self, step: WorkflowStep, params: Any) -> Any:
        timeout = step.timeout or self._default_step_timeout
        scope = asyncio.timeout(timeout)
        try:
            async with scope:
                return await self.registry.dispatch(step.action, params)
        except TimeoutError as e:
            # A collaborator's own TimeoutError is not a step timeout.
            if scope.expired():
                raise StepTimeoutError(step.action, timeout) from e
            raise

    def _log_retry(self, execution: Execution, step: WorkflowStep, index: int, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            "Step attempt failed, retrying",
            extra={
                "workflow": execution.workflow,
                "execution_id": execution.id,
                "step": index,
                "action": step.action,
                "attempt": state.attempt_number,
                "delay": state.next_action.sleep if state.next_action else None,
                "error": repr(error),
            },
        )

    async def _fail(
        self, registered: _Registered, execution: Execution, index: int, error: Exception
    ) -> None:
        definition = registered.definition
        execution.fail(error, self._now())
        logger.error(
            "Workflow failed",
            extra={
                "workflow": definition.name,
                "execution_id": execution.id,
                "step": index,
                "error": repr(error),
            },
        )

        handler = definition.error_handler
        if handler is not None:
            context = {
                **self._context(execution),
                "error": {"type": type(error).__name__, "message": str(error), "step": index},
            }
            try:
                condition = registered.handler_condition
                if condition is None or condition.evaluate(context):
                    await self._dispatch(handler, resolve_template(handler.params, context))
            except Exception:
                logger.exception(
                    "Error handler failed",
                    extra={"workflow": definition.name, "action": handler.action},
                )

        self.events.emit(
            WORKFLOW_ERROR,
            {"executionId": execution.id, "workflow": definition.name, "error": error},
        )

    def _background_done(self, execution_id: str, task: asyncio.Task[Execution]) -> None:
        self._background.pop(execution_id, None)
        if not task.cancelled():
            # Already logged and recorded on the execution.
            task.exception()

    async def _on_schedule(self, name: str) -> None:
        await self.execute(name)

    # Lifecycle

    async def start(self) -> None:
        await self.scheduler.start()

    async def stop(self) -> None:
        """Cancel schedule bindings and any background execution still running."""

        await self.scheduler.stop()
        tasks = list(self._background.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
