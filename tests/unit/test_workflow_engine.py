"""Unit tests for the workflow engine."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import pytest

from property_sync.workflow.actions import ActionRegistry
from property_sync.workflow.engine import WorkflowEngine
from property_sync.workflow.errors import (
    ConditionEvaluationError,
    StepTimeoutError,
    UnknownActionError,
    WorkflowNotFound,
    WorkflowValidationError,
)
from property_sync.workflow.events import (
    WORKFLOW_COMPLETED,
    WORKFLOW_ERROR,
    WORKFLOW_PROGRESS,
    WORKFLOW_STARTED,
    EngineEvent,
)
from property_sync.workflow.models import ExecutionStatus, RetryPolicy


class Recorder:
    """Async action handler that records the parameters it was called with."""

    def __init__(self, result: Any = None, failures: int = 0, error: type[Exception] = RuntimeError) -> None:
        self.calls: list[Any] = []
        self.result = result
        self.failures = failures
        self.error = error

    async def __call__(self, params: Any) -> Any:
        self.calls.append(params)
        if len(self.calls) <= self.failures:
            raise self.error(f"failure {len(self.calls)}")
        return self.result


def _collect(engine: WorkflowEngine, event_type: str) -> list[EngineEvent]:
    seen: list[EngineEvent] = []
    engine.events.on(event_type, seen.append)
    return seen


@pytest.mark.anyio
async def test_execute_runs_steps_in_order_and_reports_progress(
    engine: WorkflowEngine, registry: ActionRegistry
) -> None:
    a, b, c = Recorder({"id": "A"}), Recorder({"id": "B"}), Recorder({"id": "C"})
    registry.register("svc.a", a)
    registry.register("svc.b", b)
    registry.register("svc.c", c)
    engine.register({"name": "three", "steps": ["svc.a", "svc.b", "svc.c"]})

    started = _collect(engine, WORKFLOW_STARTED)
    progress = _collect(engine, WORKFLOW_PROGRESS)
    completed = _collect(engine, WORKFLOW_COMPLETED)

    execution = await engine.execute("three", {"x": 1})

    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.results == [{"id": "A"}, {"id": "B"}, {"id": "C"}]
    assert execution.current_step == 3
    assert [e.payload["step"] for e in progress] == [0, 1, 2]
    assert all(e.payload["totalSteps"] == 3 for e in progress)
    assert started[0].payload == {"executionId": execution.id, "workflow": "three", "params": {"x": 1}}
    assert completed[0].payload["results"] == execution.results
    assert completed[0].payload["duration"] == 0.0


@pytest.mark.anyio
async def test_step_params_resolve_against_previous_results(
    engine: WorkflowEngine, registry: ActionRegistry
) -> None:
    lookup = Recorder({"customerId": "SF-C-1"})
    create = Recorder({"jobId": "SF-J-1"})
    registry.register("crm.lookup", lookup)
    registry.register("crm.createJob", create)
    engine.register(
        {
            "name": "chain",
            "steps": [
                {"action": "crm.lookup", "params": {"name": "{{params.name}}"}},
                {
                    "action": "crm.createJob",
                    "params": {"customerId": "{{results.0.customerId}}", "note": "for {{params.name}}"},
                },
            ],
        }
    )

    await engine.execute("chain", {"name": "Anderson"})

    assert lookup.calls == [{"name": "Anderson"}]
    assert create.calls == [{"customerId": "SF-C-1", "note": "for {{params.name}}"}]


@pytest.mark.anyio
async def test_false_condition_skips_step_and_keeps_indices(
    engine: WorkflowEngine, registry: ActionRegistry
) -> None:
    first = Recorder({"priority": "normal"})
    urgent = Recorder("dispatched")
    last = Recorder("done")
    registry.register("wo.get", first)
    registry.register("wo.dispatch", urgent)
    registry.register("wo.close", last)
    engine.register(
        {
            "name": "maybe-urgent",
            "steps": [
                "wo.get",
                {"action": "wo.dispatch", "condition": 'steps.0.priority === "emergency"'},
                {"action": "wo.close", "params": {"priority": "{{steps.0.priority}}"}},
            ],
        }
    )
    progress = _collect(engine, WORKFLOW_PROGRESS)

    execution = await engine.execute("maybe-urgent")

    assert urgent.calls == []
    assert last.calls == [{"priority": "normal"}]
    assert execution.skipped_steps == [1]
    assert execution.results == [{"priority": "normal"}, "done"]
    assert execution.step_results == {0: {"priority": "normal"}, 2: "done"}
    assert [e.payload["step"] for e in progress] == [0, 2]


@pytest.mark.anyio
async def test_failing_step_is_retried_with_backoff(
    engine: WorkflowEngine, registry: ActionRegistry, fake_sleep
) -> None:
    flaky = Recorder("ok", failures=2)
    registry.register("svc.flaky", flaky)
    engine.register({"name": "flaky", "steps": ["svc.flaky"]})

    execution = await engine.execute("flaky")

    assert execution.results == ["ok"]
    assert len(flaky.calls) == 3
    assert fake_sleep.delays == [1.0, 2.0]


@pytest.mark.anyio
async def test_exhausted_retries_raise_last_error_and_fail_execution(
    engine: WorkflowEngine, registry: ActionRegistry, fake_sleep
) -> None:
    broken = Recorder(failures=10, error=ConnectionError)
    registry.register("svc.broken", broken)
    engine.register(
        {
            "name": "broken",
            "steps": ["svc.broken"],
            "retry_policy": {"max_attempts": 3, "backoff": "linear", "initial_delay": 0.5},
        }
    )
    errors = _collect(engine, WORKFLOW_ERROR)
    progress = _collect(engine, WORKFLOW_PROGRESS)

    with pytest.raises(ConnectionError, match="failure 3") as excinfo:
        await engine.execute("broken")

    assert fake_sleep.delays == [0.5, 1.0]
    assert "failed after 3 attempt(s)" in excinfo.value.__notes__[-1]
    assert progress == []
    assert errors[0].payload["error"] is excinfo.value

    execution = engine.get_execution(errors[0].payload["executionId"])
    assert execution is not None
    assert execution.status is ExecutionStatus.FAILED
    assert execution.error is excinfo.value
    assert execution.to_json()["error"] == {"type": "ConnectionError", "message": "failure 3"}


@pytest.mark.anyio
async def test_exponential_backoff_is_capped_and_attempts_bounded(
    engine: WorkflowEngine, registry: ActionRegistry, fake_sleep
) -> None:
    broken = Recorder(failures=10)
    registry.register("svc.broken", broken)
    engine.register(
        {
            "name": "exp",
            "steps": ["svc.broken"],
            "retry_policy": {
                "max_attempts": 3,
                "backoff": "exponential",
                "initial_delay": 1.0,
                "max_delay": 30.0,
            },
        }
    )

    with pytest.raises(RuntimeError, match="failure 3"):
        await engine.execute("exp")

    assert len(broken.calls) == 3
    assert fake_sleep.delays == [1.0, 2.0]


@pytest.mark.anyio
async def test_condition_error_fails_execution_and_runs_error_handler(
    engine: WorkflowEngine, registry: ActionRegistry, fake_sleep
) -> None:
    guarded = Recorder("never")
    notify = Recorder({"sent": True})
    registry.register("svc.count", Recorder({"count": "many"}))
    registry.register("svc.guarded", guarded)
    registry.register("ops.notify", notify)
    engine.register(
        {
            "name": "bad-compare",
            "steps": ["svc.count", {"action": "svc.guarded", "condition": "steps.0.count > 5"}],
            "error_handler": {
                "action": "ops.notify",
                "params": {"kind": "{{error.type}}", "step": "{{error.step}}"},
            },
        }
    )
    errors = _collect(engine, WORKFLOW_ERROR)

    with pytest.raises(ConditionEvaluationError) as excinfo:
        await engine.execute("bad-compare")

    assert guarded.calls == []
    assert fake_sleep.delays == []
    assert notify.calls == [{"kind": "ConditionEvaluationError", "step": 1}]
    assert errors[0].payload["error"] is excinfo.value

    execution = engine.get_execution(errors[0].payload["executionId"])
    assert execution is not None
    assert execution.status is ExecutionStatus.FAILED
    assert execution.results == [{"count": "many"}]


@pytest.mark.anyio
async def test_template_globals_resolve_in_params_and_conditions(
    registry: ActionRegistry, fake_sleep, clock
) -> None:
    engine = WorkflowEngine(
        registry,
        sleep=fake_sleep,
        now=clock,
        template_globals={
            "window": lambda moment: {"day": moment.date().isoformat()},
            "config": {"team": ["ops@example.com"]},
        },
    )
    report = Recorder("sent")
    registry.register("svc.report", report)
    engine.register(
        {
            "name": "report",
            "steps": [
                {
                    "action": "svc.report",
                    "condition": "config.team",
                    "params": {"day": "{{window.day}}", "to": "{{config.team}}"},
                }
            ],
        }
    )

    await engine.execute("report")

    assert report.calls == [{"day": "2024-01-02", "to": ["ops@example.com"]}]


@pytest.mark.anyio
async def test_step_max_attempts_overrides_policy(
    engine: WorkflowEngine, registry: ActionRegistry, fake_sleep
) -> None:
    broken = Recorder(failures=10)
    registry.register("svc.broken", broken)
    engine.register({"name": "once", "steps": [{"action": "svc.broken", "max_attempts": 1}]})

    with pytest.raises(RuntimeError):
        await engine.execute("once")

    assert len(broken.calls) == 1
    assert fake_sleep.delays == []


@pytest.mark.anyio
async def test_unknown_action_is_not_retried(engine: WorkflowEngine, fake_sleep) -> None:
    engine.register({"name": "orphan", "steps": ["missing.operation"]})

    with pytest.raises(UnknownActionError):
        await engine.execute("orphan")

    assert fake_sleep.delays == []


@pytest.mark.anyio
async def test_step_timeout_raises_step_timeout_error(engine: WorkflowEngine, registry: ActionRegistry) -> None:
    async def hang(params: Any) -> None:
        await asyncio.sleep(10)

    registry.register("svc.hang", hang)
    engine.register({"name": "slow", "steps": [{"action": "svc.hang", "timeout": 0.01, "max_attempts": 1}]})

    with pytest.raises(StepTimeoutError) as excinfo:
        await engine.execute("slow")

    assert excinfo.value.action == "svc.hang"


@pytest.mark.anyio
async def test_collaborator_timeout_error_is_not_a_step_timeout(
    engine: WorkflowEngine, registry: ActionRegistry
) -> None:
    registry.register("svc.remote", Recorder(failures=1, error=TimeoutError))
    engine.register({"name": "remote", "steps": [{"action": "svc.remote", "max_attempts": 1}]})

    with pytest.raises(TimeoutError) as excinfo:
        await engine.execute("remote")

    assert not isinstance(excinfo.value, StepTimeoutError)


@pytest.mark.anyio
async def test_error_handler_receives_error_context(engine: WorkflowEngine, registry: ActionRegistry) -> None:
    notify = Recorder({"sent": True})
    registry.register("svc.broken", Recorder(failures=10, error=ValueError))
    registry.register("ops.notify", notify)
    engine.register(
        {
            "name": "guarded",
            "steps": [{"action": "svc.broken", "max_attempts": 1}],
            "error_handler": {"action": "ops.notify", "params": {"error": "{{error}}", "kind": "{{error.type}}"}},
        }
    )

    with pytest.raises(ValueError):
        await engine.execute("guarded")

    assert notify.calls == [
        {"error": {"type": "ValueError", "message": "failure 1", "step": 0}, "kind": "ValueError"}
    ]


@pytest.mark.anyio
async def test_error_handler_failure_does_not_mask_original_error(
    engine: WorkflowEngine, registry: ActionRegistry
) -> None:
    registry.register("svc.broken", Recorder(failures=10, error=ValueError))
    registry.register("ops.notify", Recorder(failures=10, error=ConnectionError))
    engine.register(
        {
            "name": "guarded",
            "steps": [{"action": "svc.broken", "max_attempts": 1}],
            "error_handler": "ops.notify",
        }
    )

    with pytest.raises(ValueError):
        await engine.execute("guarded")


@pytest.mark.anyio
async def test_unknown_workflow_raises(engine: WorkflowEngine) -> None:
    with pytest.raises(WorkflowNotFound) as excinfo:
        await engine.execute("nope")

    assert excinfo.value.name == "nope"


def test_register_rejects_invalid_definitions(engine: WorkflowEngine, registry: ActionRegistry) -> None:
    registry.register("svc.a", Recorder())

    with pytest.raises(WorkflowValidationError):
        engine.register({"name": "empty", "steps": []})
    with pytest.raises(WorkflowValidationError):
        engine.register({"name": "bad-action", "steps": ["not-an-action"]})
    with pytest.raises(WorkflowValidationError, match="no schedule"):
        engine.register({"name": "sched", "trigger": "scheduled", "steps": ["svc.a"]})
    with pytest.raises(WorkflowValidationError, match="5 or 6 fields"):
        engine.register({"name": "cron", "schedule": "* *", "steps": ["svc.a"]})
    with pytest.raises(WorkflowValidationError, match="has no operation"):
        engine.register({"name": "typo", "steps": ["svc.b"]})
    with pytest.raises(WorkflowValidationError, match="'cond'"):
        engine.register({"name": "cond", "steps": [{"action": "svc.a", "condition": "os.system"}]})

    assert engine.definitions() == []


def test_register_normalizes_defaults(registry: ActionRegistry, fake_sleep, clock) -> None:
    engine = WorkflowEngine(
        registry,
        default_step_timeout=12.0,
        default_retry_policy=RetryPolicy(max_attempts=5),
        sleep=fake_sleep,
        now=clock,
    )
    registry.register("svc.a", Recorder())

    stored = engine.register({"name": "n", "steps": ["svc.a", {"action": "svc.a", "timeout": 2, "max_attempts": 1}]})

    assert stored.retry_policy.max_attempts == 5
    assert [(s.timeout, s.max_attempts) for s in stored.steps] == [(12.0, 5), (2.0, 1)]
    assert engine.get("n") == stored


def test_register_binds_and_replaces_schedule(engine: WorkflowEngine, registry: ActionRegistry) -> None:
    registry.register("svc.a", Recorder())

    engine.register({"name": "tick", "trigger": "scheduled", "schedule": "*/5 * * * *", "steps": ["svc.a"]})
    assert engine.scheduler.bindings() == {"tick": "*/5 * * * *"}

    engine.register({"name": "tick", "steps": ["svc.a"]})
    assert engine.scheduler.bindings() == {}
    assert len(engine.definitions()) == 1

    assert engine.unregister("tick") is True
    assert engine.unregister("tick") is False
    with pytest.raises(WorkflowNotFound):
        engine.get("tick")


@pytest.mark.anyio
async def test_finished_executions_expire_after_retention(
    engine: WorkflowEngine, registry: ActionRegistry, clock
) -> None:
    registry.register("svc.a", Recorder())
    engine.register({"name": "short", "steps": ["svc.a"]})

    execution = await engine.execute("short")
    assert engine.get_execution(execution.id) is execution

    clock.now += timedelta(seconds=299)
    assert engine.get_execution(execution.id) is execution

    clock.now += timedelta(seconds=2)
    assert engine.get_execution(execution.id) is None
    assert engine.executions() == []


@pytest.mark.anyio
async def test_start_execution_returns_live_record(engine: WorkflowEngine, registry: ActionRegistry) -> None:
    gate = asyncio.Event()

    async def blocked(params: Any) -> str:
        await gate.wait()
        return "released"

    registry.register("svc.blocked", blocked)
    engine.register({"name": "background", "steps": ["svc.blocked"]})

    execution = engine.start_execution("background", {"id": 7})
    assert execution.status is ExecutionStatus.RUNNING
    assert engine.get_execution(execution.id) is execution

    gate.set()
    finished = await engine.wait(execution.id)

    assert finished is execution
    assert execution.status is ExecutionStatus.COMPLETED
    assert execution.results == ["released"]


@pytest.mark.anyio
async def test_background_failure_is_recorded_not_raised(
    engine: WorkflowEngine, registry: ActionRegistry
) -> None:
    registry.register("svc.broken", Recorder(failures=10))
    engine.register({"name": "bg-broken", "steps": [{"action": "svc.broken", "max_attempts": 1}]})

    execution = engine.start_execution("bg-broken")
    await engine.wait(execution.id)

    assert execution.status is ExecutionStatus.FAILED
    assert isinstance(execution.error, RuntimeError)


@pytest.mark.anyio
async def test_stop_cancels_background_executions(engine: WorkflowEngine, registry: ActionRegistry) -> None:
    async def forever(params: Any) -> None:
        await asyncio.Event().wait()

    registry.register("svc.forever", forever)
    engine.register({"name": "forever", "steps": [{"action": "svc.forever", "max_attempts": 1}]})

    execution = engine.start_execution("forever")
    await asyncio.sleep(0)
    await engine.stop()

    assert execution.status is ExecutionStatus.FAILED
    assert isinstance(execution.error, asyncio.CancelledError)


@pytest.mark.anyio
async def test_sync_handlers_run_in_worker_thread(engine: WorkflowEngine, registry: ActionRegistry) -> None:
    registry.register("svc.sync", lambda params: {"echo": params})
    engine.register({"name": "sync", "steps": [{"action": "svc.sync", "params": {"v": "{{params.v}}"}}]})

    execution = await engine.execute("sync", {"v": 3})

    assert execution.results == [{"echo": {"v": 3}}]
