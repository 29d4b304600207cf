"""In-memory stand-ins for the two platforms.

Dry-run adapters keep workflows runnable end to end without credentials.
Records carry the same camelCase fields the live platform clients
normalize to, so definitions and templates are identical in both modes.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from property_sync.dedup.store import InMemoryCandidateStore
from property_sync.workflow.actions import ActionHandler

from .base import Integration, IntegrationError, RecordNotFound

logger = logging.getLogger(__name__)

Params = Mapping[str, Any] | None

_WORK_ORDER_FILTERS = ("status", "priority", "buildingId", "portfolioId")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def sample_portfolio() -> dict[str, list[dict[str, Any]]]:
    """A small portfolio used when no seed data is supplied."""

    return {
        "portfolios": [
            {
                "id": "P-1",
                "pwEntityId": "P-1",
                "name": "Anderson Properties",
                "address": "123 Main St, Austin, TX 78701",
                "phone": "(512) 555-0100",
                "email": "office@andersonproperties.example",
            },
            {
                "id": "P-2",
                "pwEntityId": "P-2",
                "name": "Lakeside Holdings",
                "address": "900 Lake Shore Blvd, Austin, TX 78746",
                "phone": "(512) 555-0199",
                "email": "manager@lakeside.example",
            },
        ],
        "buildings": [
            {
                "id": "B-10",
                "pwEntityId": "B-10",
                "portfolioId": "P-1",
                "name": "Main Street Lofts",
                "address": "123 Main St, Austin, TX 78701",
            },
            {
                "id": "B-20",
                "pwEntityId": "B-20",
                "portfolioId": "P-2",
                "name": "Lakeside Tower",
                "address": "900 Lake Shore Blvd, Austin, TX 78746",
            },
        ],
        "workOrders": [
            {
                "id": "WO-100",
                "pwEntityId": "WO-100",
                "type": "workOrder",
                "portfolioId": "P-1",
                "buildingId": "B-10",
                "unit": "4B",
                "description": "Water heater leaking in unit 4B",
                "priority": "emergency",
                "status": "open",
                "tenantName": "Jamie Rivera",
                "address": "123 Main St, Apt 4B, Austin, TX 78701",
                "phone": "512-555-0142",
            },
            {
                "id": "WO-101",
                "pwEntityId": "WO-101",
                "type": "workOrder",
                "portfolioId": "P-2",
                "buildingId": "B-20",
                "unit": "12",
                "description": "Replace hallway light fixture",
                "priority": "normal",
                "status": "open",
                "tenantName": "Morgan Lee",
                "address": "900 Lake Shore Blvd, Ste 12, Austin, TX 78746",
                "phone": "512-555-0177",
            },
        ],
        "leases": [
            {
                "id": "L-200",
                "buildingId": "B-10",
                "portfolioId": "P-1",
                "unit": "4B",
                "tenantName": "Jamie Rivera",
                "tenantEmail": "jamie.rivera@example.com",
                "deposit": 1500.0,
                "endDate": "2026-12-31",
            },
        ],
    }


class DryRunPropertyManagement(Integration):
    """Property-management platform backed by dictionaries."""

    capability = "propertyware"

    def __init__(
        self,
        seed: Mapping[str, list[dict[str, Any]]] | None = None,
        *,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        data = copy.deepcopy(dict(seed if seed is not None else sample_portfolio()))
        self._now = now
        self._lock = threading.Lock()
        self._portfolios = {p["id"]: p for p in data.get("portfolios", [])}
        self._buildings = {b["id"]: b for b in data.get("buildings", [])}
        self._work_orders = {w["id"]: w for w in data.get("workOrders", [])}
        self._leases = {lease["id"]: lease for lease in data.get("leases", [])}
        self._vendors: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1000)

    def operations(self) -> dict[str, ActionHandler]:
        return {
            "getPortfolios": self.get_portfolios,
            "getBuildings": self.get_buildings,
            "getWorkOrders": self.get_work_orders,
            "getWorkOrder": self.get_work_order,
            "createWorkOrder": self.create_work_order,
            "updateWorkOrder": self.update_work_order,
            "updateStatus": self.update_status,
            "getLeaseDetails": self.get_lease_details,
            "scheduleInspection": self.schedule_inspection,
            "calculateDeposit": self.calculate_deposit,
            "getLeases": self.get_leases,
            "getCompletedWorkOrders": self.get_completed_work_orders,
            "createVendor": self.create_vendor,
        }

    def get_portfolios(self, params: Params = None) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(list(self._portfolios.values()))

    def get_buildings(self, params: Params = None) -> list[dict[str, Any]]:
        portfolio_id = (params or {}).get("portfolioId")
        with self._lock:
            buildings = [
                b
                for b in self._buildings.values()
                if not portfolio_id or b.get("portfolioId") == portfolio_id
            ]
            return copy.deepcopy(buildings)

    def get_work_orders(self, params: Params = None) -> list[dict[str, Any]]:
        filters = {k: v for k, v in (params or {}).items() if k in _WORK_ORDER_FILTERS and v}
        with self._lock:
            found = [w for w in self._work_orders.values() if all(w.get(k) == v for k, v in filters.items())]
            return copy.deepcopy(found)

    def get_completed_work_orders(self, params: Params = None) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy([w for w in self._work_orders.values() if _completed_within(w, params)])

    def get_leases(self, params: Params = None) -> list[dict[str, Any]]:
        filters = {k: v for k, v in (params or {}).items() if k in ("buildingId", "portfolioId") and v}
        with self._lock:
            found = [
                lease
                for lease in self._leases.values()
                if all(lease.get(k) == v for k, v in filters.items())
            ]
            return copy.deepcopy(found)

    def get_work_order(self, params: Params) -> dict[str, Any]:
        work_order_id = self._require(params, "workOrderId", "getWorkOrder")
        with self._lock:
            return copy.deepcopy(self._get(self._work_orders, work_order_id, "getWorkOrder"))

    def create_work_order(self, params: Params) -> dict[str, Any]:
        description = self._require(params, "description", "createWorkOrder")
        building_id = self._require(params, "buildingId", "createWorkOrder")
        with self._lock:
            building = self._get(self._buildings, building_id, "createWorkOrder")
            work_order_id = f"WO-{next(self._ids)}"
            record = {
                **dict(params or {}),
                "id": work_order_id,
                "pwEntityId": work_order_id,
                "type": "workOrder",
                "portfolioId": building.get("portfolioId"),
                "buildingId": building_id,
                "description": description,
                "priority": (params or {}).get("priority", "normal"),
                "status": "open",
                "createdAt": self._now().isoformat(),
            }
            self._work_orders[work_order_id] = record
        logger.info("Work order created", extra={"work_order_id": work_order_id, "dry_run": True})
        return copy.deepcopy(record)

    def update_work_order(self, params: Params) -> dict[str, Any]:
        work_order_id = self._require(params, "workOrderId", "updateWorkOrder")
        updates = dict((params or {}).get("updates") or {})
        for key in ("id", "pwEntityId", "type"):
            updates.pop(key, None)
        with self._lock:
            record = self._get(self._work_orders, work_order_id, "updateWorkOrder")
            record.update(_stamp_updates(updates, self._now().isoformat()))
            return copy.deepcopy(record)

    def update_status(self, params: Params) -> dict[str, Any]:
        status = self._require(params, "status", "updateStatus")
        work_order_id = (params or {}).get("workOrderId")
        return self.update_work_order({"workOrderId": work_order_id, "updates": {"status": status}})

    def get_lease_details(self, params: Params) -> dict[str, Any]:
        lease_id = self._require(params, "leaseId", "getLeaseDetails")
        with self._lock:
            return copy.deepcopy(self._get(self._leases, lease_id, "getLeaseDetails"))

    def schedule_inspection(self, params: Params) -> dict[str, Any]:
        lease_id = self._require(params, "leaseId", "scheduleInspection")
        with self._lock:
            lease = self._get(self._leases, lease_id, "scheduleInspection")
            return {
                "inspectionId": f"INSP-{next(self._ids)}",
                "leaseId": lease_id,
                "buildingId": lease.get("buildingId"),
                "unit": lease.get("unit"),
                "type": (params or {}).get("type") or "Move-Out",
                "date": (params or {}).get("date") or lease.get("endDate"),
                "status": "scheduled",
            }

    def calculate_deposit(self, params: Params) -> dict[str, Any]:
        lease_id = self._require(params, "leaseId", "calculateDeposit")
        deductions = list((params or {}).get("deductions") or [])
        with self._lock:
            lease = self._get(self._leases, lease_id, "calculateDeposit")
        deposit = float(lease.get("deposit") or 0.0)
        try:
            withheld = sum(float(d.get("amount", 0.0)) for d in deductions)
        except (TypeError, ValueError, AttributeError) as e:
            raise IntegrationError(self.capability, "calculateDeposit", f"invalid deductions: {e}") from e
        return {
            "leaseId": lease_id,
            "deposit": deposit,
            "deductions": deductions,
            "withheld": withheld,
            "refund": max(deposit - withheld, 0.0),
        }

    def create_vendor(self, params: Params) -> dict[str, Any]:
        vendor = dict((params or {}).get("vendor") or params or {})
        name = self._require(vendor, "name", "createVendor")
        with self._lock:
            vendor_id = f"V-{next(self._ids)}"
            record = {
                **vendor,
                "id": vendor_id,
                "vendorId": vendor_id,
                "type": "vendor",
                "name": name,
                "status": "active",
                "createdAt": self._now().isoformat(),
            }
            self._vendors[vendor_id] = record
        logger.info("Vendor created", extra={"vendor_id": vendor_id, "dry_run": True})
        return copy.deepcopy(record)

    def _get(self, table: dict[str, dict[str, Any]], record_id: str, operation: str) -> dict[str, Any]:
        try:
            return table[record_id]
        except KeyError:
            raise RecordNotFound(self.capability, operation, f"no record {record_id!r}") from None


class DryRunFieldService(Integration):
    """Field-service platform backed by dictionaries.

    Every created customer, technician and job is indexed into ``store`` so
    the deduplication engine sees it on the next check. A job created from a
    work order also indexes a ``workOrder`` record for that order.
    """

    capability = "servicefusion"

    def __init__(
        self,
        store: InMemoryCandidateStore | None = None,
        *,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self._now = now
        self._lock = threading.Lock()
        self._customers: dict[str, dict[str, Any]] = {}
        self._jobs: dict[str, dict[str, Any]] = {}
        self._customer_ids = itertools.count(1)
        self._job_ids = itertools.count(1)
        self._technicians: dict[str, dict[str, Any]] = {}
        self._technician_ids = itertools.count(1)

    def operations(self) -> dict[str, ActionHandler]:
        return {
            "getCustomers": self.get_customers,
            "getJobs": self.get_jobs,
            "createCustomer": self.create_customer,
            "createJob": self.create_job,
            "createUrgentJob": self.create_urgent_job,
            "createInspectionJob": self.create_inspection_job,
            "updateJob": self.update_job,
            "getCompletedJobs": self.get_completed_jobs,
            "createTechnician": self.create_technician,
        }

    def get_customers(self, params: Params = None) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(list(self._customers.values()))

    def get_jobs(self, params: Params = None) -> list[dict[str, Any]]:
        filters = {k: v for k, v in (params or {}).items() if k in ("customerId", "status") and v}
        with self._lock:
            found = [j for j in self._jobs.values() if all(j.get(k) == v for k, v in filters.items())]
            return copy.deepcopy(found)

    def get_completed_jobs(self, params: Params = None) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy([j for j in self._jobs.values() if _completed_within(j, params)])

    def customer_for(self, pw_entity_id: str) -> dict[str, Any] | None:
        with self._lock:
            for customer in self._customers.values():
                if customer.get("pwEntityId") == pw_entity_id:
                    return copy.deepcopy(customer)
        return None

    def create_customer(self, params: Params) -> dict[str, Any]:
        data = dict(params or {})
        name = data.get("customerName") or data.get("name")
        if not name:
            raise IntegrationError(self.capability, "createCustomer", "missing required parameter 'name'")
        customer_id = f"SF-C-{next(self._customer_ids)}"
        record = {
            "id": customer_id,
            "sfCustomerId": customer_id,
            "type": "customer",
            "name": name,
            "status": "active",
            "address": data.get("address"),
            "phone": data.get("phone"),
            "email": data.get("email"),
            "pwEntityId": data.get("pwEntityId"),
            "portfolioId": data.get("portfolioId"),
            "buildingId": data.get("buildingId"),
            "createdAt": self._now().isoformat(),
        }
        with self._lock:
            self._customers[customer_id] = record
        self._index(record)
        logger.info("Customer created", extra={"customer_id": customer_id, "dry_run": True})
        return copy.deepcopy(record)

    def create_job(self, params: Params) -> dict[str, Any]:
        data = dict(params or {})
        description = data.get("description")
        if not description:
            raise IntegrationError(self.capability, "createJob", "missing required parameter 'description'")
        job_id = f"SF-J-{next(self._job_ids)}"
        work_order_id = data.get("workOrderId")
        record = {
            "id": job_id,
            "sfJobId": job_id,
            "type": "job",
            "checkNumber": data.get("checkNumber") or work_order_id,
            "customerId": data.get("customerId"),
            "description": description,
            "status": data.get("status") or "scheduled",
            "priority": data.get("priority") or "normal",
            "category": data.get("category") or "Maintenance",
            "scheduledDate": data.get("scheduledDate") or self._now().isoformat(),
            "notes": data.get("notes"),
            "pwEntityId": work_order_id,
            "portfolioId": data.get("portfolioId"),
            "buildingId": data.get("buildingId"),
            "createdAt": self._now().isoformat(),
        }
        with self._lock:
            self._jobs[job_id] = record
        self._index(record)
        if work_order_id:
            # Mirror of the source work order, for the building history check.
            self._index(
                {
                    "id": work_order_id,
                    "type": "workOrder",
                    "pwEntityId": work_order_id,
                    "jobId": job_id,
                    "buildingId": record["buildingId"],
                    "portfolioId": record["portfolioId"],
                    "description": description,
                    "createdAt": data.get("workOrderCreatedAt") or record["createdAt"],
                }
            )
        logger.info("Job created", extra={"job_id": job_id, "dry_run": True})
        return copy.deepcopy(record)

    def create_urgent_job(self, params: Params) -> dict[str, Any]:
        data = dict(params or {})
        job = job_from_work_order(data.pop("workOrder", None) or {})
        job.update({k: v for k, v in data.items() if v is not None})
        if not job.get("customerId"):
            job["customerId"] = self._walk_in_customer(job)["id"]
        job.update(
            priority="emergency",
            scheduledDate=self._now().isoformat(),
            notes=f"URGENT: {job.get('description')}",
        )
        return self.create_job(job)

    def create_inspection_job(self, params: Params) -> dict[str, Any]:
        data = dict(params or {})
        inspection = dict(data.get("inspection") or data)
        lease = dict(data.get("lease") or {})
        lease_id = inspection.get("leaseId") or lease.get("id")
        if not lease_id:
            raise IntegrationError(
                self.capability, "createInspectionJob", "missing required parameter 'leaseId'"
            )
        return self.create_job(
            {
                "checkNumber": f"INSP-{lease_id}",
                "customerId": data.get("customerId"),
                "description": f"{inspection.get('type') or 'Move-Out'} Inspection",
                "category": "Inspection",
                "scheduledDate": inspection.get("date"),
                "notes": inspection.get("notes"),
                "buildingId": inspection.get("buildingId") or lease.get("buildingId"),
                "portfolioId": lease.get("portfolioId"),
            }
        )

    def update_job(self, params: Params) -> dict[str, Any]:
        job_id = self._require(params, "jobId", "updateJob")
        updates = dict((params or {}).get("updates") or {})
        for key in ("id", "sfJobId", "type"):
            updates.pop(key, None)
        with self._lock:
            try:
                record = self._jobs[job_id]
            except KeyError:
                raise RecordNotFound(self.capability, "updateJob", f"no record {job_id!r}") from None
            record.update(_stamp_updates(updates, self._now().isoformat()))
            updated = copy.deepcopy(record)
        self._index(updated)
        return updated

    def create_technician(self, params: Params) -> dict[str, Any]:
        """Create a technician for a property-management vendor.

        The technician carries the vendor id as ``pwEntityId``, which is the
        cross-system mapping the deduplication store resolves.
        """

        data = dict(params or {})
        vendor = dict(data.get("vendor") or {})
        name = vendor.get("name")
        if not name:
            raise IntegrationError(
                self.capability, "createTechnician", "missing required parameter 'vendor.name'"
            )
        technician_id = f"SF-T-{next(self._technician_ids)}"
        record = {
            "id": technician_id,
            "technicianId": technician_id,
            "type": "technician",
            "name": name,
            "email": vendor.get("email"),
            "phone": vendor.get("phone"),
            "trade": vendor.get("trade"),
            "pwEntityId": data.get("pwVendorId"),
            "createdAt": self._now().isoformat(),
        }
        with self._lock:
            self._technicians[technician_id] = record
        self._index(record)
        logger.info("Technician created", extra={"technician_id": technician_id, "dry_run": True})
        return {
            **copy.deepcopy(record),
            "credentials": {"username": vendor.get("email") or technician_id, "mustResetPassword": True},
        }

    def _walk_in_customer(self, job: Mapping[str, Any]) -> dict[str, Any]:
        return self.create_customer(
            {
                "name": job.get("tenantName") or f"Work order {job.get('workOrderId')}",
                "address": job.get("address"),
                "phone": job.get("phone"),
                "buildingId": job.get("buildingId"),
                "portfolioId": job.get("portfolioId"),
            }
        )

    def _index(self, record: Mapping[str, Any]) -> None:
        if self.store is not None:
            self.store.add(record)


def job_from_work_order(work_order: Mapping[str, Any]) -> dict[str, Any]:
    """Field-service job fields for a property-management work order."""

    if not work_order:
        return {}
    return {
        "workOrderId": work_order.get("id") or work_order.get("pwEntityId"),
        "description": work_order.get("description"),
        "priority": work_order.get("priority"),
        "buildingId": work_order.get("buildingId"),
        "portfolioId": work_order.get("portfolioId"),
        "tenantName": work_order.get("tenantName"),
        "address": work_order.get("address"),
        "phone": work_order.get("phone"),
        "workOrderCreatedAt": work_order.get("createdAt"),
    }


def _completed_within(record: Mapping[str, Any], params: Params) -> bool:
    """Completed, with a completion day inside the inclusive ``startDate``/``endDate`` window."""

    completed_at = record.get("completedAt")
    if record.get("status") != "completed" or not completed_at:
        return False
    day = str(completed_at)[:10]
    start = str((params or {}).get("startDate") or "")[:10]
    end = str((params or {}).get("endDate") or "")[:10]
    return (not start or day >= start) and (not end or day <= end)


def _stamp_updates(updates: dict[str, Any], now: str) -> dict[str, Any]:
    if updates.get("status") == "completed":
        updates.setdefault("completedAt", now)
    updates["updatedAt"] = now
    return updates
