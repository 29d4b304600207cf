"""Pre-built workflow definitions."""

from __future__ import annotations

from datetime import datetime, timedelta

from .models import TriggerKind, WorkflowDefinition

# Seconds-first: every 30 minutes from 12:00 to 23:30 UTC, Tuesday to Saturday.
DAILY_SYNC_SCHEDULE = "0 */30 12-23 * * 2-6"
# Midnight UTC on the first day of every month.
MONTH_END_SCHEDULE = "0 0 1 * *"

_EMERGENCY = 'steps.0.priority == "emergency"'
_NEW_VENDOR = "not steps.0.duplicate"


def last_month(moment: datetime) -> dict[str, str]:
    """The calendar month before ``moment`` as inclusive ISO dates."""

    end = moment.date().replace(day=1) - timedelta(days=1)
    return {"start": end.replace(day=1).isoformat(), "end": end.isoformat()}


def daily_sync() -> WorkflowDefinition:
    return WorkflowDefinition(
        name="daily-sync",
        description="Daily Property Sync",
        schedule=DAILY_SYNC_SCHEDULE,
        trigger=TriggerKind.SCHEDULED,
        steps=[
            "propertyware.getPortfolios",
            {"action": "propertyware.getWorkOrders", "params": {"status": "open"}},
            "servicefusion.getCustomers",
            "servicefusion.getJobs",
            "propertyware.getBuildings",
            "propertyware.getLeases",
            {"action": "sync.pushPortfolios", "params": {"portfolios": "{{results.0}}"}},
            {"action": "sync.pushLeaseTenants", "params": {"leases": "{{results.5}}"}},
            {"action": "sync.pushWorkOrders", "params": {"workOrders": "{{results.1}}"}},
            {"action": "sync.pushJobUpdates", "params": {"jobs": "{{results.3}}"}},
        ],
    )


def emergency_maintenance() -> WorkflowDefinition:
    """Dispatch an urgent job for an emergency work order.

    Non-emergency work orders stop after the lookup and customer match.
    """

    return WorkflowDefinition(
        name="emergency-maintenance",
        description="Emergency Maintenance Response",
        trigger=TriggerKind.EVENT,
        steps=[
            {"action": "propertyware.getWorkOrder", "params": {"workOrderId": "{{params.workOrderId}}"}},
            {"action": "deduplication.findCustomer", "params": {"entity": "{{steps.0}}"}},
            {
                "action": "servicefusion.createUrgentJob",
                "condition": _EMERGENCY,
                "params": {"workOrder": "{{steps.0}}", "customerId": "{{steps.1.customerId}}"},
            },
            {
                "action": "notifications.alertOnCall",
                "condition": _EMERGENCY,
                "params": {"workOrder": "{{steps.0}}", "job": "{{steps.2}}"},
            },
            {
                "action": "propertyware.updateStatus",
                "condition": _EMERGENCY,
                "params": {"workOrderId": "{{params.workOrderId}}", "status": "dispatched"},
            },
        ],
        error_handler={
            "action": "notifications.notify",
            "params": {
                "workflow": "emergency-maintenance",
                "error": "{{error}}",
                "workOrderId": "{{params.workOrderId}}",
            },
        },
    )


def tenant_moveout() -> WorkflowDefinition:
    return WorkflowDefinition(
        name="tenant-moveout",
        description="Tenant Move-Out Process",
        trigger=TriggerKind.MANUAL,
        steps=[
            {"action": "propertyware.getLeaseDetails", "params": {"leaseId": "{{params.leaseId}}"}},
            {
                "action": "propertyware.scheduleInspection",
                "params": {
                    "leaseId": "{{params.leaseId}}",
                    "date": "{{params.moveOutDate}}",
                    "type": "Move-Out",
                },
            },
            {
                "action": "servicefusion.createInspectionJob",
                "params": {"inspection": "{{results.1}}", "lease": "{{results.0}}"},
            },
            {
                "action": "propertyware.calculateDeposit",
                "params": {"leaseId": "{{params.leaseId}}", "deductions": "{{params.deductions}}"},
            },
            {
                "action": "notifications.sendMoveOutPacket",
                "params": {
                    "lease": "{{results.0}}",
                    "inspection": "{{results.2}}",
                    "deposit": "{{results.3}}",
                },
            },
        ],
    )


def month_end_reconciliation() -> WorkflowDefinition:
    """Match last month's completed jobs to completed work orders and mail the report.

    Needs the ``lastMonth`` and ``config`` template globals.
    """

    window = {"startDate": "{{lastMonth.start}}", "endDate": "{{lastMonth.end}}"}
    return WorkflowDefinition(
        name="month-end-reconciliation",
        description="Month-End Financial Reconciliation",
        schedule=MONTH_END_SCHEDULE,
        trigger=TriggerKind.SCHEDULED,
        steps=[
            {"action": "servicefusion.getCompletedJobs", "params": window},
            {"action": "propertyware.getCompletedWorkOrders", "params": window},
            {
                "action": "reconciliation.matchWorkOrders",
                "params": {"sfJobs": "{{results.0}}", "pwWorkOrders": "{{results.1}}"},
            },
            {
                "action": "reconciliation.generateReport",
                "params": {
                    "matched": "{{results.2.matched}}",
                    "unmatched": "{{results.2.unmatched}}",
                    "period": "{{lastMonth}}",
                },
            },
            {
                "action": "notifications.sendReconciliationReport",
                "params": {"report": "{{results.3}}", "recipients": "{{config.financeTeam}}"},
            },
        ],
    )


def vendor_onboarding() -> WorkflowDefinition:
    return WorkflowDefinition(
        name="vendor-onboarding",
        description="Vendor Onboarding",
        trigger=TriggerKind.MANUAL,
        steps=[
            {"action": "deduplication.findMatches", "params": {"entity": "{{params.vendor}}"}},
            {
                "action": "propertyware.createVendor",
                "condition": _NEW_VENDOR,
                "params": {"vendor": "{{params.vendor}}"},
            },
            {
                "action": "servicefusion.createTechnician",
                "condition": _NEW_VENDOR,
                "params": {"vendor": "{{params.vendor}}", "pwVendorId": "{{steps.1.vendorId}}"},
            },
            {
                "action": "notifications.sendVendorWelcome",
                "condition": _NEW_VENDOR,
                "params": {
                    "vendor": "{{params.vendor}}",
                    "technicianId": "{{steps.2.technicianId}}",
                    "credentials": "{{steps.2.credentials}}",
                },
            },
        ],
    )


def builtin_workflows() -> list[WorkflowDefinition]:
    return [
        daily_sync(),
        emergency_maintenance(),
        tenant_moveout(),
        month_end_reconciliation(),
        vendor_onboarding(),
    ]
