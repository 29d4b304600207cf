"""Matching strategies.

Each strategy takes the entity being checked and returns zero or more
:class:`MatchCandidate`. Strategies are synchronous; the engine runs them in
worker threads so a slow store query never blocks the event loop.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

from .models import Entity, MatchCandidate
from .similarity import (
    address_similarity,
    description_similarity,
    name_similarity,
    normalize_address,
    normalize_email,
    normalize_phone,
)
from .store import CandidateStore, entity_name, parent_id

PHONE_CONFIDENCE = 0.95
EMAIL_CONFIDENCE = 0.98
SIBLING_CONFIDENCE = 0.85
SIBLING_NAME_SIMILARITY = 0.8
HISTORY_CONFIDENCE = 0.9
HISTORY_DESCRIPTION_SIMILARITY = 0.8
HISTORY_WINDOW = timedelta(days=7)


class Strategy(Protocol):
    name: str

    def find(self, entity: Entity) -> list[MatchCandidate]: ...


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class EntityIdStrategy:
    """Exact match on identifiers issued by either platform."""

    store: CandidateStore
    name: str = "entity-id"

    def find(self, entity: Entity) -> list[MatchCandidate]:
        matches: list[MatchCandidate] = []
        if entity.get("pwEntityId"):
            existing = self.store.by_foreign_id(str(entity["pwEntityId"]))
            if existing is not None:
                matches.append(MatchCandidate(str(existing["id"]), self.name, 1.0, ("pwEntityId",), existing))

        sf_id = entity.get("sfCustomerId") or entity.get("sfJobId")
        if sf_id:
            existing = self.store.by_foreign_id(str(sf_id))
            if existing is not None:
                matches.append(
                    MatchCandidate(str(existing["id"]), self.name, 1.0, ("sfCustomerId", "sfJobId"), existing)
                )
        return matches


@dataclass
class AddressStrategy:
    store: CandidateStore
    name: str = "address-matching"

    def find(self, entity: Entity) -> list[MatchCandidate]:
        address = entity.get("address")
        if not address:
            return []
        matches = []
        for candidate in self.store.by_address(normalize_address(address)):
            confidence = address_similarity(address, candidate.get("address"))
            if confidence > 0:
                matches.append(
                    MatchCandidate(str(candidate["id"]), "address", confidence, ("address",), candidate)
                )
        return matches


@dataclass
class NameFuzzyStrategy:
    store: CandidateStore
    name: str = "name-fuzzy"

    def find(self, entity: Entity) -> list[MatchCandidate]:
        wanted = entity_name(entity)
        if not wanted:
            return []
        matches = []
        for candidate in self.store.by_name(wanted):
            confidence = name_similarity(wanted, entity_name(candidate))
            if confidence > 0:
                matches.append(
                    MatchCandidate(str(candidate["id"]), self.name, confidence, ("name",), candidate)
                )
        return matches


@dataclass
class PhoneEmailStrategy:
    store: CandidateStore
    name: str = "phone-email"

    def find(self, entity: Entity) -> list[MatchCandidate]:
        matches: list[MatchCandidate] = []
        phone = normalize_phone(entity.get("phone"))
        if phone:
            matches.extend(
                MatchCandidate(str(c["id"]), "phone", PHONE_CONFIDENCE, ("phone",), c)
                for c in self.store.by_phone(phone)
            )
        email = normalize_email(entity.get("email"))
        if email:
            matches.extend(
                MatchCandidate(str(c["id"]), "email", EMAIL_CONFIDENCE, ("email",), c)
                for c in self.store.by_email(email)
            )
        return matches


@dataclass
class ParentChildStrategy:
    """Siblings under the same parent whose names are near-identical."""

    store: CandidateStore
    name: str = "parent-child"

    def find(self, entity: Entity) -> list[MatchCandidate]:
        parent = parent_id(entity)
        wanted = entity_name(entity)
        if parent is None or not wanted:
            return []
        return [
            MatchCandidate(str(s["id"]), self.name, SIBLING_CONFIDENCE, ("parentId", "name"), s)
            for s in self.store.by_parent(parent)
            if entity_name(s) and name_similarity(wanted, entity_name(s)) > SIBLING_NAME_SIMILARITY
        ]


@dataclass
class WorkOrderHistoryStrategy:
    """Recent work orders in the same building describing the same problem."""

    store: CandidateStore
    name: str = "work-order-history"
    window: timedelta = HISTORY_WINDOW
    now: Callable[[], datetime] = field(default=_utc_now, repr=False)

    def find(self, entity: Entity) -> list[MatchCandidate]:
        if entity.get("type") != "workOrder" or not entity.get("description") or not entity.get("buildingId"):
            return []
        since = self.now() - self.window
        return [
            MatchCandidate(
                str(wo["id"]), self.name, HISTORY_CONFIDENCE, ("buildingId", "description", "timeframe"), wo
            )
            for wo in self.store.recent_work_orders(str(entity["buildingId"]), since)
            if description_similarity(entity["description"], wo.get("description"))
            > HISTORY_DESCRIPTION_SIMILARITY
        ]


def default_strategies(
    store: CandidateStore, *, now: Callable[[], datetime] = _utc_now
) -> dict[str, Strategy]:
    """The built-in strategy table, keyed by configuration name."""

    strategies: list[Strategy] = [
        EntityIdStrategy(store),
        AddressStrategy(store),
        NameFuzzyStrategy(store),
        PhoneEmailStrategy(store),
        ParentChildStrategy(store),
        WorkOrderHistoryStrategy(store, now=now),
    ]
    return {strategy.name: strategy for strategy in strategies}
