"""Core package initialization."""

from property_sync.core.config import SyncConfig
from property_sync.core.orchestrator import SyncOrchestrator

__all__ = [
    "SyncConfig",
    "SyncOrchestrator",
]
