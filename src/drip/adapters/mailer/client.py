from __future__ import annotations

import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from drip.config import MailerConfig, WorkspaceError


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class Mailer(Protocol):
    def send(
        self,
        template_key: str,
        customer_id: str,
        recipient_email: str,
        template_data: dict[str, Any],
    ) -> SendResult: ...


class MailerError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


class HttpMailer:
    """Hands rendered-message requests to an HTTP email relay.

    The relay renders ``template_key`` with ``template_data`` and delivers it.
    Transport failures never raise; they come back as ``SendResult(success=False)``.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        from_address: str,
        max_retries: int = 3,
        timeout: float = 30.0,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.endpoint = endpoint
        self.from_address = from_address
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self.session = requests.Session()
        self.session.headers.update(
            {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        )

    @classmethod
    def from_config(cls, config: MailerConfig) -> HttpMailer:
        api_key = os.getenv(config.api_key_env)
        if not api_key:
            raise WorkspaceError(f"{config.api_key_env} is not set.")
        return cls(
            endpoint=config.endpoint,
            api_key=api_key,
            from_address=config.from_address,
            max_retries=config.max_retries,
            timeout=config.timeout_seconds,
        )

    def send(
        self,
        template_key: str,
        customer_id: str,
        recipient_email: str,
        template_data: dict[str, Any],
    ) -> SendResult:
        payload = {
            "from": self.from_address,
            "to": recipient_email,
            "templateKey": template_key,
            "customerId": customer_id,
            "data": template_data,
            "tags": [{"name": "template", "value": template_key}],
        }
        last_error = "Unknown error"
        for attempt in range(self.max_retries):
            try:
                data = self._request(payload)
            except MailerError as exc:
                last_error = str(exc)
                if not exc.retryable:
                    break
                if attempt < self.max_retries - 1:
                    # 1s, 2s, 4s, ...
                    self._sleep(self.backoff_seconds * (2**attempt))
                continue
            return SendResult(success=True, message_id=data.get("messageId"))
        return SendResult(success=False, error=last_error)

    def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise MailerError(f"Mail relay unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise MailerError(
                f"Mail relay error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
