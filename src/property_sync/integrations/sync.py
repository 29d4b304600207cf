"""Pushes property-management records to the field-service platform.

Every create is preceded by a deduplication check; a record with a match at
or above the configured confidence is reported as skipped instead of being
created again. Job status changes flow the other way, back onto the work
orders they were created from.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from property_sync.dedup.engine import DeduplicationEngine
from property_sync.dedup.models import Entity
from property_sync.workflow.actions import ActionHandler

from .base import Integration, IntegrationError, RecordNotFound, record_list
from .dry_run import job_from_work_order

logger = logging.getLogger(__name__)

# Field-service job status -> work order status. Other job states leave the work order alone.
JOB_STATUS_TO_WORK_ORDER: dict[str, str] = {
    "started": "in progress",
    "in progress": "in progress",
    "on hold": "on hold",
    "completed": "completed",
    "cancelled": "cancelled",
}


class FieldServiceClient(Protocol):
    def create_customer(self, params: Mapping[str, Any] | None) -> dict[str, Any]: ...

    def create_job(self, params: Mapping[str, Any] | None) -> dict[str, Any]: ...

    def customer_for(self, pw_entity_id: str) -> dict[str, Any] | None: ...


class PropertyManagementClient(Protocol):
    def get_work_order(self, params: Mapping[str, Any] | None) -> dict[str, Any]: ...

    def update_status(self, params: Mapping[str, Any] | None) -> dict[str, Any]: ...


def customer_entity(portfolio: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "type": "customer",
        "pwEntityId": portfolio.get("pwEntityId") or portfolio.get("id"),
        "name": portfolio.get("name"),
        "address": portfolio.get("address"),
        "phone": portfolio.get("phone"),
        "email": portfolio.get("email"),
    }


def tenant_entity(lease: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "type": "customer",
        "pwEntityId": lease.get("tenantId") or lease.get("id"),
        "name": lease.get("tenantName"),
        "phone": lease.get("tenantPhone"),
        "email": lease.get("tenantEmail"),
        "portfolioId": lease.get("portfolioId"),
        "buildingId": lease.get("buildingId"),
    }


def work_order_entity(work_order: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "type": "workOrder",
        "pwEntityId": work_order.get("pwEntityId") or work_order.get("id"),
        "buildingId": work_order.get("buildingId"),
        "description": work_order.get("description"),
    }


class WorkOrderSync(Integration):
    capability = "sync"

    def __init__(
        self,
        dedup: DeduplicationEngine,
        field_service: FieldServiceClient,
        property_management: PropertyManagementClient | None = None,
    ) -> None:
        self.dedup = dedup
        self.field_service = field_service
        self.property_management = property_management

    def operations(self) -> dict[str, ActionHandler]:
        return {
            "pushPortfolios": self.push_portfolios,
            "pushLeaseTenants": self.push_lease_tenants,
            "pushWorkOrders": self.push_work_orders,
            "pushJobUpdates": self.push_job_updates,
        }

    async def push_portfolios(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        created: list[dict[str, Any]] = []
        skipped: list[dict[str, Any]] = []
        for portfolio in record_list(params, "portfolios"):
            entity = customer_entity(portfolio)
            duplicate = await self._duplicate_of(entity)
            if duplicate is not None:
                skipped.append({"pwEntityId": entity["pwEntityId"], **duplicate})
                continue
            customer = await asyncio.to_thread(
                self.field_service.create_customer,
                {**entity, "portfolioId": entity["pwEntityId"]},
            )
            self.dedup.forget(entity)
            created.append({"pwEntityId": entity["pwEntityId"], "customerId": customer["id"]})

        return _report("portfolios", created, skipped)

    async def push_lease_tenants(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        """Create a field-service customer for every leaseholder not already known there."""

        created: list[dict[str, Any]] = []
        skipped: list[dict[str, Any]] = []
        for lease in record_list(params, "leases"):
            entity = tenant_entity(lease)
            if not entity["name"]:
                continue
            duplicate = await self._duplicate_of(entity)
            if duplicate is not None:
                skipped.append({"leaseId": lease.get("id"), **duplicate})
                continue
            customer = await asyncio.to_thread(self.field_service.create_customer, entity)
            self.dedup.forget(entity)
            created.append({"leaseId": lease.get("id"), "customerId": customer["id"]})

        return _report("leaseTenants", created, skipped)

    async def push_work_orders(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        created: list[dict[str, Any]] = []
        skipped: list[dict[str, Any]] = []
        for work_order in record_list(params, "workOrders"):
            entity = work_order_entity(work_order)
            duplicate = await self._duplicate_of(entity)
            if duplicate is not None:
                skipped.append({"workOrderId": entity["pwEntityId"], **duplicate})
                continue

            job = job_from_work_order(work_order)
            portfolio_id = work_order.get("portfolioId")
            customer = self.field_service.customer_for(portfolio_id) if portfolio_id else None
            if customer is not None:
                job["customerId"] = customer["id"]
            record = await asyncio.to_thread(self.field_service.create_job, job)
            self.dedup.forget(entity)
            created.append({"workOrderId": entity["pwEntityId"], "jobId": record["id"]})

        return _report("workOrders", created, skipped)

    async def push_job_updates(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        """Write field-service job progress back onto the originating work orders.

        Jobs without a work order reference, or in a state with no work order
        counterpart, are left alone. A work order that no longer exists is
        reported under ``missing``.
        """

        if self.property_management is None:
            raise IntegrationError(self.capability, "pushJobUpdates", "no property-management client")

        updated: list[dict[str, Any]] = []
        missing: list[str] = []
        unchanged = 0
        for job in record_list(params, "jobs"):
            work_order_id = job.get("pwEntityId")
            status = JOB_STATUS_TO_WORK_ORDER.get(str(job.get("status") or "").lower())
            if not work_order_id or status is None:
                unchanged += 1
                continue
            try:
                work_order = await asyncio.to_thread(
                    self.property_management.get_work_order, {"workOrderId": work_order_id}
                )
            except RecordNotFound:
                logger.warning("Job references an unknown work order", extra={"job_id": job.get("id")})
                missing.append(str(work_order_id))
                continue
            if work_order.get("status") == status:
                unchanged += 1
                continue
            await asyncio.to_thread(
                self.property_management.update_status, {"workOrderId": work_order_id, "status": status}
            )
            updated.append({"workOrderId": work_order_id, "jobId": job.get("id"), "status": status})

        logger.info(
            "Job updates pushed",
            extra={
                "updated_count": len(updated),
                "unchanged_count": unchanged,
                "missing_count": len(missing),
            },
        )
        return {"updated": updated, "unchanged": unchanged, "missing": missing}

    async def _duplicate_of(self, entity: Entity) -> dict[str, Any] | None:
        matches = await self.dedup.find_matches(entity)
        if not matches:
            return None
        top = matches[0]
        return {"matchId": top.id, "strategy": top.strategy, "confidence": top.confidence}


def _report(kind: str, created: list[dict[str, Any]], skipped: list[dict[str, Any]]) -> dict[str, Any]:
    logger.info(
        "Records pushed",
        extra={"kind": kind, "created_count": len(created), "skipped_count": len(skipped)},
    )
    return {"created": created, "skipped": skipped}
