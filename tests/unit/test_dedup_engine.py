"""Unit tests for the deduplication engine and its strategies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest

from property_sync.dedup.engine import DeduplicationEngine
from property_sync.dedup.errors import UnknownStrategyError
from property_sync.dedup.models import Entity, MatchCandidate
from property_sync.dedup.store import InMemoryCandidateStore
from property_sync.dedup.strategies import (
    ParentChildStrategy,
    WorkOrderHistoryStrategy,
    default_strategies,
)
from property_sync.workflow.events import DUPLICATE_DETECTED, EngineEvent, EventBus

ANDERSON = {"name": "Anderson Properties", "address": "123 Main St, Austin, TX 78701"}


@dataclass
class StaticStrategy:
    name: str
    matches: list[MatchCandidate]

    def find(self, entity: Entity) -> list[MatchCandidate]:
        return list(self.matches)


@dataclass
class ExplodingStrategy:
    name: str = "exploding"

    def find(self, entity: Entity) -> list[MatchCandidate]:
        raise ConnectionError("store unavailable")


def _candidate(entity_id: str, confidence: float, strategy: str = "static") -> MatchCandidate:
    return MatchCandidate(entity_id, strategy, confidence, ("name",), {"id": entity_id})


class Clock:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value


@pytest.mark.anyio
async def test_repeat_submission_matches_after_first_is_indexed(store: InMemoryCandidateStore) -> None:
    engine = DeduplicationEngine(store, confidence=0.9)

    assert await engine.find_matches(ANDERSON) == []

    store.add({"id": "SF-C-1", **ANDERSON})
    engine.forget(ANDERSON)
    matches = await engine.find_matches(ANDERSON)

    assert [(m.id, m.confidence) for m in matches] == [("SF-C-1", 1.0)]


@pytest.mark.anyio
async def test_cached_result_is_served_until_ttl(store: InMemoryCandidateStore) -> None:
    clock = Clock()
    engine = DeduplicationEngine(store, confidence=0.9, cache_ttl=10.0, clock=clock)

    assert await engine.find_matches(ANDERSON) == []
    store.add({"id": "SF-C-1", **ANDERSON})

    clock.value += 9.0
    assert await engine.find_matches(ANDERSON) == []

    clock.value += 1.0
    assert len(await engine.find_matches(ANDERSON)) == 1


@pytest.mark.anyio
async def test_cache_can_be_disabled_or_cleared(store: InMemoryCandidateStore) -> None:
    uncached = DeduplicationEngine(store, confidence=0.9, cache=False)
    cached = DeduplicationEngine(store, confidence=0.9)

    assert await uncached.find_matches(ANDERSON) == []
    assert await cached.find_matches(ANDERSON) == []
    store.add({"id": "SF-C-1", **ANDERSON})

    assert len(await uncached.find_matches(ANDERSON)) == 1
    assert await cached.find_matches(ANDERSON) == []
    cached.clear_cache()
    assert len(await cached.find_matches(ANDERSON)) == 1


@pytest.mark.anyio
async def test_matches_are_sorted_filtered_and_unique(store: InMemoryCandidateStore) -> None:
    table = {
        "first": StaticStrategy("first", [_candidate("A", 0.91), _candidate("B", 0.5)]),
        "second": StaticStrategy("second", [_candidate("C", 0.99), _candidate("A", 1.0)]),
    }
    engine = DeduplicationEngine(store, confidence=0.9, strategy_table=table)

    matches = await engine.find_matches({"name": "x"})

    # "A" keeps its first occurrence; "B" falls under the threshold.
    assert [(m.id, m.confidence) for m in matches] == [("C", 0.99), ("A", 0.91)]


@pytest.mark.anyio
async def test_threshold_is_inclusive(store: InMemoryCandidateStore) -> None:
    table = {"only": StaticStrategy("only", [_candidate("A", 0.8)])}

    assert len(await DeduplicationEngine(store, confidence=0.8, strategy_table=table).find_matches({})) == 1
    assert await DeduplicationEngine(store, confidence=0.81, strategy_table=table).find_matches({}) == []


@pytest.mark.anyio
async def test_failing_strategy_contributes_nothing(store: InMemoryCandidateStore) -> None:
    table = {
        "exploding": ExplodingStrategy(),
        "static": StaticStrategy("static", [_candidate("A", 0.95)]),
    }
    engine = DeduplicationEngine(store, confidence=0.9, strategy_table=table)

    matches = await engine.find_matches({"name": "x"})

    assert [m.id for m in matches] == ["A"]


@pytest.mark.anyio
async def test_phone_and_email_matches(store: InMemoryCandidateStore) -> None:
    store.add({"id": "C-1", "name": "Lakeside", "phone": "512-555-0100"})
    store.add({"id": "C-2", "name": "Other", "email": "OPS@lakeside.com"})
    engine = DeduplicationEngine(store, confidence=0.9, strategies=["phone-email"])

    matches = await engine.find_matches({"phone": "(512) 555 0100", "email": "ops@lakeside.com"})

    assert [(m.id, m.strategy, m.confidence) for m in matches] == [("C-2", "email", 0.98), ("C-1", "phone", 0.95)]


@pytest.mark.anyio
async def test_entity_id_match(store: InMemoryCandidateStore) -> None:
    store.add({"id": "SF-J-1", "pwEntityId": "WO-100", "type": "job"})
    engine = DeduplicationEngine(store, confidence=0.9, strategies=["entity-id"])

    matches = await engine.find_matches({"pwEntityId": "WO-100"})

    assert matches[0].id == "SF-J-1"
    assert matches[0].matched_fields == ("pwEntityId",)


@pytest.mark.anyio
async def test_duplicate_event_is_emitted(store: InMemoryCandidateStore) -> None:
    events = EventBus()
    seen: list[EngineEvent] = []
    events.on(DUPLICATE_DETECTED, seen.append)
    store.add({"id": "SF-C-1", **ANDERSON})
    engine = DeduplicationEngine(store, confidence=0.9, events=events)

    matches = await engine.find_matches(ANDERSON)

    assert len(seen) == 1
    assert seen[0].payload == {"entity": ANDERSON, "matches": matches, "confidence": 1.0}


@pytest.mark.anyio
async def test_disabled_engine_never_matches(store: InMemoryCandidateStore) -> None:
    store.add({"id": "SF-C-1", **ANDERSON})
    engine = DeduplicationEngine(store, confidence=0.9, enabled=False)

    assert await engine.find_matches(ANDERSON) == []


def test_construction_validates_configuration(store: InMemoryCandidateStore) -> None:
    with pytest.raises(UnknownStrategyError):
        DeduplicationEngine(store, confidence=0.9, strategies=["entity-id", "psychic"])
    with pytest.raises(ValueError):
        DeduplicationEngine(store, confidence=1.5)


@pytest.mark.anyio
async def test_registered_strategy_is_enabled(store: InMemoryCandidateStore) -> None:
    engine = DeduplicationEngine(store, confidence=0.5, strategies=[])
    engine.register_strategy(StaticStrategy("extra", [_candidate("Z", 0.6)]))

    assert "extra" in engine.strategy_names
    assert [m.id for m in await engine.find_matches({})] == ["Z"]


@pytest.mark.anyio
async def test_capability_operations(store: InMemoryCandidateStore) -> None:
    store.add({"id": "SF-C-1", **ANDERSON})
    engine = DeduplicationEngine(store, confidence=0.9, cache=False)
    operations = engine.operations()

    found = await operations["findCustomer"]({"entity": ANDERSON})
    checked = await operations["findMatches"](ANDERSON)
    missing = await operations["findCustomer"]({"entity": {"name": "Nobody At All"}})

    assert found["customerId"] == "SF-C-1"
    assert found["matches"][0]["matchedFields"]
    assert checked["duplicate"] is True
    assert missing == {"customerId": None, "confidence": 0.0, "matches": []}
    with pytest.raises(TypeError):
        await operations["findMatches"](["not", "a", "mapping"])


def test_parent_child_requires_similar_sibling_names(store: InMemoryCandidateStore) -> None:
    store.add({"id": "B-1", "name": "Oak Tower", "portfolioId": "P-1"})
    store.add({"id": "B-2", "name": "Pine Court", "portfolioId": "P-1"})
    store.add({"id": "B-3", "name": "Oak Tower", "portfolioId": "P-2"})

    matches = ParentChildStrategy(store).find({"name": "Oak Towers", "portfolioId": "P-1"})

    assert [(m.id, m.confidence) for m in matches] == [("B-1", 0.85)]


def test_work_order_history_uses_building_window_and_description(store: InMemoryCandidateStore) -> None:
    now = datetime(2024, 1, 10, tzinfo=UTC)
    description = "Water leaking from ceiling in unit 4B"
    store.add(
        {
            "id": "WO-1",
            "type": "workOrder",
            "buildingId": "B-10",
            "description": description,
            "createdAt": (now - timedelta(days=2)).isoformat(),
        }
    )
    store.add(
        {
            "id": "WO-2",
            "type": "workOrder",
            "buildingId": "B-10",
            "description": description,
            "createdAt": (now - timedelta(days=30)).isoformat(),
        }
    )
    store.add({"id": "WO-3", "type": "workOrder", "buildingId": "B-20", "description": description})
    strategy = WorkOrderHistoryStrategy(store, now=lambda: now)

    matches = strategy.find({"type": "workOrder", "buildingId": "B-10", "description": description.upper()})

    assert [(m.id, m.confidence) for m in matches] == [("WO-1", 0.9)]
    assert strategy.find({"type": "portfolio", "buildingId": "B-10", "description": description}) == []


def test_default_strategy_table_names(store: InMemoryCandidateStore) -> None:
    assert list(default_strategies(store)) == [
        "entity-id",
        "address-matching",
        "name-fuzzy",
        "phone-email",
        "parent-child",
        "work-order-history",
    ]
