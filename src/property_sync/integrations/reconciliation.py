"""Month-end reconciliation of field-service jobs against work orders."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from property_sync.workflow.actions import ActionHandler

from .base import Integration, record_list

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _work_order_ref(job: Mapping[str, Any]) -> str | None:
    ref = job.get("pwEntityId") or job.get("checkNumber")
    return str(ref) if ref else None


class Reconciliation(Integration):
    """Pairs jobs with the work orders they were created from and reports the gaps."""

    capability = "reconciliation"

    def __init__(self, *, now: Callable[[], datetime] = _utc_now) -> None:
        self._now = now

    def operations(self) -> dict[str, ActionHandler]:
        return {
            "matchWorkOrders": self.match_work_orders,
            "generateReport": self.generate_report,
        }

    def match_work_orders(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        work_orders = {
            str(w.get("id") or w.get("pwEntityId")): w for w in record_list(params, "pwWorkOrders")
        }
        matched: list[dict[str, Any]] = []
        unmatched_jobs: list[str] = []
        for job in record_list(params, "sfJobs"):
            ref = _work_order_ref(job)
            work_order = work_orders.pop(ref, None) if ref else None
            if work_order is None:
                unmatched_jobs.append(str(job.get("id")))
                continue
            matched.append(
                {
                    "workOrderId": ref,
                    "jobId": job.get("id"),
                    "jobStatus": job.get("status"),
                    "workOrderStatus": work_order.get("status"),
                    "jobTotal": job.get("total"),
                }
            )

        return {
            "matched": matched,
            "unmatched": {"jobs": unmatched_jobs, "workOrders": list(work_orders)},
        }

    def generate_report(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        matched = record_list(params, "matched")
        unmatched = (params or {}).get("unmatched") or {}
        unmatched_jobs = list(unmatched.get("jobs") or [])
        unmatched_work_orders = list(unmatched.get("workOrders") or [])

        total = len(matched) + len(unmatched_jobs) + len(unmatched_work_orders)
        report = {
            "generatedAt": self._now().isoformat(),
            "period": (params or {}).get("period"),
            "matchedCount": len(matched),
            "unmatchedJobs": unmatched_jobs,
            "unmatchedWorkOrders": unmatched_work_orders,
            "statusMismatches": [
                m.get("workOrderId") for m in matched if m.get("jobStatus") != m.get("workOrderStatus")
            ],
            "matchRate": len(matched) / total if total else 1.0,
            "jobTotal": sum(float(m.get("jobTotal") or 0.0) for m in matched),
        }
        logger.info(
            "Reconciliation report generated",
            extra={"matched_count": len(matched), "unmatched_count": total - len(matched)},
        )
        return report
