"""Entity deduplication: matching strategies, candidate store and engine."""

from property_sync.dedup.engine import DeduplicationEngine
from property_sync.dedup.errors import StrategyExecutionError, UnknownStrategyError
from property_sync.dedup.models import MatchCandidate
from property_sync.dedup.store import CandidateStore, InMemoryCandidateStore

__all__ = [
    "CandidateStore",
    "DeduplicationEngine",
    "InMemoryCandidateStore",
    "MatchCandidate",
    "StrategyExecutionError",
    "UnknownStrategyError",
]
