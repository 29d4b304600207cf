"""Candidate store access for the matching strategies.

The production store lives outside this package; :class:`CandidateStore` is
the query surface the strategies need. :class:`InMemoryCandidateStore` backs
dry runs and tests, and the dry-run adapters index every record they create
into it.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from .models import Entity
from .similarity import normalize_address, normalize_email, normalize_phone, tokens

FOREIGN_ID_FIELDS = ("pwEntityId", "sfCustomerId", "sfJobId")
PARENT_FIELDS = ("parentId", "portfolioId", "buildingId")


class CandidateStore(Protocol):
    def by_foreign_id(self, value: str) -> Entity | None: ...

    def by_address(self, address: str) -> list[Entity]: ...

    def by_name(self, name: str) -> list[Entity]: ...

    def by_phone(self, phone: str) -> list[Entity]: ...

    def by_email(self, email: str) -> list[Entity]: ...

    def by_parent(self, parent_id: str) -> list[Entity]: ...

    def recent_work_orders(self, building_id: str, since: datetime) -> list[Entity]: ...


def entity_name(entity: Mapping[str, Any]) -> str | None:
    return entity.get("name") or entity.get("customerName")


def parent_id(entity: Mapping[str, Any]) -> str | None:
    for key in PARENT_FIELDS:
        if entity.get(key):
            return str(entity[key])
    return None


def _timestamp(value: object) -> datetime | None:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        try:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


@dataclass(eq=False)
class InMemoryCandidateStore:
    """Thread-safe in-memory store; entities are keyed by their ``id``."""

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._entities: dict[str, dict[str, Any]] = {}

    def add(self, entity: Mapping[str, Any]) -> dict[str, Any]:
        if not entity.get("id"):
            raise ValueError("Candidate entity requires an 'id'")
        record = dict(entity)
        record["id"] = str(record["id"])
        with self._lock:
            self._entities[record["id"]] = record
        return record

    def remove(self, entity_id: str) -> None:
        with self._lock:
            self._entities.pop(entity_id, None)

    def get(self, entity_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._entities.get(entity_id)

    def all(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._entities.values())

    def clear(self) -> None:
        with self._lock:
            self._entities.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entities)

    # Queries

    def by_foreign_id(self, value: str) -> Entity | None:
        for entity in self.all():
            if any(str(entity.get(key)) == value for key in FOREIGN_ID_FIELDS if entity.get(key)):
                return entity
        return None

    def by_address(self, address: str) -> list[Entity]:
        wanted = set(normalize_address(address).split())
        return [
            e
            for e in self.all()
            if e.get("address") and wanted & set(normalize_address(e["address"]).split())
        ]

    def by_name(self, name: str) -> list[Entity]:
        wanted = set(tokens(name))
        return [
            e
            for e in self.all()
            if (candidate := entity_name(e)) and (not wanted or wanted & set(tokens(candidate)))
        ]

    def by_phone(self, phone: str) -> list[Entity]:
        return [e for e in self.all() if phone and normalize_phone(e.get("phone")) == phone]

    def by_email(self, email: str) -> list[Entity]:
        return [e for e in self.all() if email and normalize_email(e.get("email")) == email]

    def by_parent(self, parent: str) -> list[Entity]:
        return [e for e in self.all() if any(str(e.get(k)) == parent for k in PARENT_FIELDS if e.get(k))]

    def recent_work_orders(self, building_id: str, since: datetime) -> list[Entity]:
        found: list[Entity] = []
        for e in self.all():
            if e.get("type") != "workOrder" or str(e.get("buildingId")) != building_id:
                continue
            created = _timestamp(e.get("createdAt"))
            if created is not None and created >= since:
                found.append(e)
        return found
