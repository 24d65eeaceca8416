from __future__ import annotations

import time
from typing import Any
from uuid import uuid4

import requests

from drip.logs import get_logger

logger = get_logger("drip.tracking", level="DEBUG")


def generate_anonymous_id() -> str:
    return f"anon_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


class EventTracker:
    """Best-effort storefront event reporting for one visitor.

    Calls never raise and return nothing; a failed report is only logged.
    The anonymous id lives here, on the client, until a link succeeds.
    """

    def __init__(
        self,
        base_url: str,
        anonymous_id: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.anonymous_id = anonymous_id or generate_anonymous_id()
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if headers:
            self.session.headers.update(headers)

    def track(self, event_type: str, **properties: Any) -> None:
        body: dict[str, Any] = {"eventType": event_type, "properties": properties}
        if self.anonymous_id:
            body["anonymousId"] = self.anonymous_id
        self._fire("POST", body)

    def link(self, customer_headers: dict[str, str]) -> None:
        """Ask the server to attach this visitor's history to the signed-in customer."""
        if not self.anonymous_id:
            return
        response = self._fire("PATCH", {"anonymousId": self.anonymous_id}, customer_headers)
        if response is not None and response.ok:
            self.anonymous_id = None

    def _fire(
        self,
        method: str,
        body: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> requests.Response | None:
        try:
            return self.session.request(
                method,
                f"{self.base_url}/api/events",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except Exception as exc:  # tracking must never reach the visitor
            logger.debug("event tracking failed: %s", exc)
            return None
