"""Property Sync Orchestrator.

Keeps a property-management platform and a field-service platform in step:
- scheduled and on-demand workflows with retry, backoff and templated steps
- duplicate detection before every create
- a CLI and a REST API over both
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
