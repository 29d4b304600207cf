"""Platform integrations registered as workflow capabilities."""

from property_sync.integrations.base import Integration, IntegrationError, RecordNotFound
from property_sync.integrations.dry_run import DryRunFieldService, DryRunPropertyManagement
from property_sync.integrations.notifications import WebhookNotifier
from property_sync.integrations.reconciliation import Reconciliation
from property_sync.integrations.sync import WorkOrderSync

__all__ = [
    "DryRunFieldService",
    "DryRunPropertyManagement",
    "Integration",
    "IntegrationError",
    "Reconciliation",
    "RecordNotFound",
    "WebhookNotifier",
    "WorkOrderSync",
]
