"""Abstract base class for platform integrations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from property_sync.workflow.actions import ActionHandler


class IntegrationError(Exception):
    """An integration could not complete an operation."""

    def __init__(self, capability: str, operation: str, message: str) -> None:
        super().__init__(f"{capability}.{operation}: {message}")
        self.capability = capability
        self.operation = operation


class RecordNotFound(IntegrationError):
    pass


class Integration(ABC):
    """A collaborator registered in the action registry as one capability.

    Subclasses expose a fixed operation table; each handler takes the
    resolved step parameters (a mapping) and returns a JSON-like result.
    """

    capability: ClassVar[str]

    @abstractmethod
    def operations(self) -> Mapping[str, ActionHandler]:
        """Return the operation table, keyed by operation name."""

    def connect(self) -> None:
        """Open connections or sessions. No-op by default."""

    def close(self) -> None:
        """Release connections or sessions. No-op by default."""

    def _require(self, params: Mapping[str, Any] | None, key: str, operation: str) -> Any:
        value = (params or {}).get(key)
        if value is None or value == "":
            raise IntegrationError(self.capability, operation, f"missing required parameter {key!r}")
        return value


def record_list(params: Mapping[str, Any] | None, key: str) -> list[Mapping[str, Any]]:
    """The mapping entries of ``params[key]``; a missing key is an empty list."""

    records = (params or {}).get(key) or []
    if not isinstance(records, Sequence) or isinstance(records, (str, bytes)):
        raise TypeError(f"{key} must be a list of records")
    return [r for r in records if isinstance(r, Mapping)]
