"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime
from pathlib import Path

import pytest

from property_sync.core.config import DeduplicationSettings, RetrySettings, SyncConfig
from property_sync.dedup.store import InMemoryCandidateStore
from property_sync.workflow.actions import ActionRegistry
from property_sync.workflow.engine import WorkflowEngine


class FakeSleep:
    """Records requested delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep host SYNC_* variables and any local .env out of the tests."""
    for key in list(os.environ):
        if key.startswith("SYNC_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> ActionRegistry:
    return ActionRegistry()


@pytest.fixture
def engine(registry: ActionRegistry, fake_sleep: FakeSleep, clock: FakeClock) -> WorkflowEngine:
    return WorkflowEngine(registry, sleep=fake_sleep, now=clock)


@pytest.fixture
def store() -> InMemoryCandidateStore:
    return InMemoryCandidateStore()


@pytest.fixture
def sync_config() -> SyncConfig:
    """Provide a dry-run configuration with a strict dedup threshold."""
    return SyncConfig(
        log_level="DEBUG",
        dry_run=True,
        deduplication=DeduplicationSettings(confidence=0.9),
        retry=RetrySettings(max_attempts=2, initial_delay_seconds=0.0),
    )
