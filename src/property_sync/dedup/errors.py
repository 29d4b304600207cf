from __future__ import annotations


class DeduplicationError(Exception):
    """Base class for deduplication errors."""


class UnknownStrategyError(DeduplicationError, ValueError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown matching strategy: {name}")
        self.name = name


class StrategyExecutionError(DeduplicationError):
    """A matching strategy failed. Logged and excluded, never raised to callers."""

    def __init__(self, strategy: str, cause: BaseException) -> None:
        super().__init__(f"Strategy {strategy} failed: {cause!r}")
        self.strategy = strategy
        self.cause = cause
