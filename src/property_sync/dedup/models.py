from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

Entity = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class MatchCandidate:
    """An existing record that may duplicate the entity being checked.

    ``entity`` belongs to the candidate store and must be treated as read-only.
    """

    id: str
    strategy: str
    confidence: float
    matched_fields: tuple[str, ...]
    entity: Entity

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "strategy": self.strategy,
            "confidence": self.confidence,
            "matchedFields": list(self.matched_fields),
            "entity": dict(self.entity),
        }
