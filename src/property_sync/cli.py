"""CLI entrypoint for the sync orchestrator.

Exit codes: 0 success, 1 command failed, 2 configuration or usage error,
3 unknown workflow.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from property_sync import __version__
from property_sync.core.config import SyncConfig
from property_sync.core.orchestrator import SyncOrchestrator
from property_sync.workflow.errors import WorkflowNotFound

logger = logging.getLogger(__name__)


def _parse_json_object(value: str) -> dict[str, Any]:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("expected a JSON object")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="property-sync",
        description="Property-management / field-service sync orchestrator",
    )
    parser.add_argument("--version", action="version", version=f"property-sync-orchestrator {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-workflows", help="List registered workflows")

    run_workflow = subparsers.add_parser("run-workflow", help="Run a workflow once and print its execution")
    run_workflow.add_argument("name", help="Workflow name, e.g. 'tenant-moveout'")
    run_workflow.add_argument(
        "--params",
        type=_parse_json_object,
        default={},
        help='Workflow parameters as a JSON object, e.g. \'{"leaseId": "L-200"}\'',
    )

    find_matches = subparsers.add_parser("find-matches", help="Check an entity for duplicates")
    find_matches.add_argument(
        "--entity",
        type=_parse_json_object,
        required=True,
        help='Entity as a JSON object, e.g. \'{"name": "Anderson Properties"}\'',
    )

    run_scheduler = subparsers.add_parser("run-scheduler", help="Fire scheduled workflows until interrupted")
    run_scheduler.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Stop after this many seconds (0 means run until interrupted)",
    )

    return parser


async def _run_workflow(orchestrator: SyncOrchestrator, name: str, params: dict[str, Any]) -> int:
    await orchestrator.start()
    try:
        execution = orchestrator.engine.start_execution(name, params)
        await orchestrator.engine.wait(execution.id)
    finally:
        await orchestrator.stop()
    print(json.dumps(execution.to_json(), indent=2, default=str))
    return 0 if execution.error is None else 1


async def _find_matches(orchestrator: SyncOrchestrator, entity: dict[str, Any]) -> int:
    matches = await orchestrator.find_matches(entity)
    print(json.dumps([m.to_json() for m in matches], indent=2, default=str))
    return 0


async def _run_scheduler(orchestrator: SyncOrchestrator, duration: float) -> int:
    await orchestrator.start()
    try:
        if duration > 0:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await orchestrator.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = SyncConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    try:
        orchestrator = SyncOrchestrator(config)

        if args.command == "list-workflows":
            for definition in orchestrator.engine.definitions():
                schedule = f" [{definition.schedule}]" if definition.schedule else ""
                steps = len(definition.steps)
                print(f"{definition.name}{schedule}: {definition.description} ({steps} steps)")
            return 0

        if args.command == "run-workflow":
            return asyncio.run(_run_workflow(orchestrator, args.name, args.params))

        if args.command == "find-matches":
            return asyncio.run(_find_matches(orchestrator, args.entity))

        if args.command == "run-scheduler":
            try:
                return asyncio.run(_run_scheduler(orchestrator, args.duration))
            except KeyboardInterrupt:
                logger.info("Scheduler interrupted")
                return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except WorkflowNotFound as e:
        logger.warning(str(e), extra={"workflow": e.name})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
