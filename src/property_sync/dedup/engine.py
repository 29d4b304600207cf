"""Entity deduplication engine.

Runs the configured matching strategies against an entity and returns the
candidates that probably describe the same real-world record, best first.
The engine is also registered as the ``deduplication`` capability so
workflows can check for duplicates before creating anything.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from property_sync.workflow.events import DUPLICATE_DETECTED, EventBus

from .cache import MatchCache, fingerprint
from .errors import StrategyExecutionError, UnknownStrategyError
from .models import Entity, MatchCandidate
from .store import CandidateStore
from .strategies import Strategy, default_strategies

if TYPE_CHECKING:
    from property_sync.core.config import DeduplicationSettings

logger = logging.getLogger(__name__)


class DeduplicationEngine:
    capability = "deduplication"

    def __init__(
        self,
        store: CandidateStore,
        *,
        confidence: float,
        strategies: Sequence[str] | None = None,
        enabled: bool = True,
        cache: bool = True,
        cache_ttl: float = 3600.0,
        events: EventBus | None = None,
        strategy_table: Mapping[str, Strategy] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")
        self.store = store
        self.confidence = confidence
        self.enabled = enabled
        self.events = events
        self._table: dict[str, Strategy] = dict(
            strategy_table if strategy_table is not None else default_strategies(store)
        )
        names = list(strategies) if strategies is not None else list(self._table)
        for name in names:
            if name not in self._table:
                raise UnknownStrategyError(name)
        self.strategy_names = names
        self._cache = MatchCache(cache_ttl, clock=clock) if cache else None

    @classmethod
    def from_settings(
        cls,
        settings: DeduplicationSettings,
        store: CandidateStore,
        *,
        events: EventBus | None = None,
    ) -> DeduplicationEngine:
        return cls(
            store,
            confidence=settings.confidence,
            strategies=settings.parsed_strategies(),
            enabled=settings.enabled,
            cache=settings.cache,
            cache_ttl=settings.cache_ttl_seconds,
            events=events,
        )

    def register_strategy(self, strategy: Strategy, *, enable: bool = True) -> None:
        self._table[strategy.name] = strategy
        if enable and strategy.name not in self.strategy_names:
            self.strategy_names.append(strategy.name)

    def clear_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    def forget(self, entity: Entity) -> None:
        """Drop the cached result for ``entity``, e.g. after creating it downstream."""

        if self._cache is not None:
            self._cache.discard(fingerprint(entity))

    async def find_matches(self, entity: Entity) -> list[MatchCandidate]:
        """Return likely duplicates of ``entity``, best first.

        Never raises because of a strategy: a failing strategy is logged and
        contributes nothing.
        """

        if not self.enabled:
            return []

        key = fingerprint(entity)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Match cache hit", extra={"fingerprint": key})
                return cached

        batches = await asyncio.gather(*(self._run_strategy(name, entity) for name in self.strategy_names))

        seen: set[str] = set()
        unique: list[MatchCandidate] = []
        for match in (m for batch in batches for m in batch):
            if match.id not in seen:
                seen.add(match.id)
                unique.append(match)
        unique.sort(key=lambda m: m.confidence, reverse=True)
        matches = [m for m in unique if m.confidence >= self.confidence]

        if self._cache is not None:
            self._cache.put(key, matches)

        if matches:
            logger.warning(
                "Duplicate detected",
                extra={"matches": len(matches), "confidence": matches[0].confidence},
            )
            if self.events is not None:
                self.events.emit(
                    DUPLICATE_DETECTED,
                    {"entity": dict(entity), "matches": matches, "confidence": matches[0].confidence},
                )
        return matches

    async def _run_strategy(self, name: str, entity: Entity) -> list[MatchCandidate]:
        strategy = self._table[name]
        try:
            return await asyncio.to_thread(strategy.find, entity)
        except Exception as e:
            failure = StrategyExecutionError(name, e)
            logger.error(
                "Matching strategy failed",
                extra={"strategy": name, "error": str(failure)},
                exc_info=e,
            )
            return []

    # Capability surface

    def operations(self) -> dict[str, Callable[[Any], Any]]:
        return {
            "findMatches": self._find_matches_action,
            "findCustomer": self._find_customer_action,
        }

    async def _find_matches_action(self, params: Any) -> dict[str, Any]:
        matches = await self.find_matches(_entity_param(params))
        return {
            "duplicate": bool(matches),
            "confidence": matches[0].confidence if matches else 0.0,
            "matches": [m.to_json() for m in matches],
        }

    async def _find_customer_action(self, params: Any) -> dict[str, Any]:
        # Jobs and work orders can match too; only a customer record answers this.
        matches = [m for m in await self.find_matches(_entity_param(params)) if _is_customer(m.entity)]
        top = matches[0] if matches else None
        return {
            "customerId": top.id if top else None,
            "confidence": top.confidence if top else 0.0,
            "matches": [m.to_json() for m in matches],
        }


def _is_customer(entity: Entity) -> bool:
    return entity.get("type") == "customer" or bool(entity.get("sfCustomerId"))


def _entity_param(params: Any) -> Entity:
    # Accepts either {"entity": {...}} or the entity itself.
    if isinstance(params, Mapping):
        entity = params.get("entity", params)
        if isinstance(entity, Mapping):
            return entity
    raise TypeError(f"Expected an entity mapping, got {type(params).__name__}")
