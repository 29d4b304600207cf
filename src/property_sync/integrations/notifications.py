"""Notification sink posting workflow messages to a webhook."""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import requests

from property_sync.workflow.actions import ActionHandler

from .base import Integration

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class WebhookNotifier(Integration):
    """Posts one JSON document per notification.

    Without a webhook URL messages are only logged and reported as not sent.
    HTTP failures raise ``requests.HTTPError`` so the workflow step is retried.
    """

    capability = "notifications"

    def __init__(
        self,
        webhook_url: str = "",
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.webhook_url = webhook_url.strip()
        self.timeout = timeout
        self._session = session
        self._now = now

    def operations(self) -> dict[str, ActionHandler]:
        kinds = (
            "notify",
            "alertOnCall",
            "sendMoveOutPacket",
            "sendReconciliationReport",
            "sendVendorWelcome",
        )
        return {kind: functools.partial(self.send, kind) for kind in kinds}

    def connect(self) -> None:
        self._open_session()

    def _open_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update(
                {
                    "Content-Type": "application/json",
                    "User-Agent": "property-sync-orchestrator",
                }
            )
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def send(self, kind: str, params: Mapping[str, Any] | None) -> dict[str, Any]:
        message = {"kind": kind, "sentAt": self._now().isoformat(), "payload": dict(params or {})}
        if not self.webhook_url:
            logger.info("Notification (no webhook configured)", extra={"kind": kind})
            return {"sent": False, "kind": kind}

        resp = self._open_session().post(self.webhook_url, json=message, timeout=self.timeout)
        resp.raise_for_status()
        logger.info("Notification sent", extra={"kind": kind, "status_code": resp.status_code})
        return {"sent": True, "kind": kind, "status": resp.status_code}
