"""FastAPI server adapter for the property sync orchestrator.

Business logic stays in ``property_sync.workflow`` and ``property_sync.dedup``;
routing, CORS and request models live here.
"""

from __future__ import annotations

__all__ = ["create_app"]

from property_sync.server.app import create_app
