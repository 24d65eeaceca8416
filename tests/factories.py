from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Any
from uuid import uuid4

from drip.adapters.mailer.client import SendResult
from drip.config import JobConfig, StoreConfig, TriggerConfig, WorkspaceConfig
from drip.store.sqlite import SqliteStore

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "resources" / "schema" / "canonical.yaml"

DEFAULT_ITEMS = [{"productId": "p-1", "name": "Oak Stool", "imageUrl": "https://cdn/oak.jpg"}]


def make_store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(tmp_path / "test.sqlite")
    store.apply_schema(SCHEMA_PATH)
    return store


def make_workspace(tmp_path: Path, store: SqliteStore) -> WorkspaceConfig:
    return WorkspaceConfig(
        name="test",
        store=StoreConfig(sqlite_path=store.db_path),
        mailer=None,
        trigger=TriggerConfig(),
        jobs=JobConfig(max_workers=2),
        unsubscribe_secret_env="UNSUBSCRIBE_SECRET",
        path=tmp_path,
    )


def add_customer(
    store: SqliteStore,
    *,
    email: str | None = None,
    name: str | None = "Jane Doe",
    consent: bool = True,
    created_at: str = "2023-01-01T00:00:00+00:00",
) -> str:
    customer_id = str(uuid4())
    store.execute(
        "INSERT INTO customers (customer_id, email, display_name, marketing_consent, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (
            customer_id,
            email or f"{customer_id[:8]}@example.com",
            name,
            1 if consent else 0,
            created_at,
            created_at,
        ),
    )
    return customer_id


def add_order(
    store: SqliteStore,
    customer_id: str | None,
    created_at: str,
    *,
    email: str | None = "buyer@example.com",
    status: str = "completed",
    items: Any = None,
) -> str:
    order_id = str(uuid4())
    if items is None:
        items = DEFAULT_ITEMS
    raw = items if isinstance(items, str) else json.dumps(items)
    store.execute(
        "INSERT INTO orders (order_id, customer_id, customer_email, status, items, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (order_id, customer_id, email, status, raw, created_at),
    )
    return order_id


def count_rows(store: SqliteStore, table: str) -> int:
    row = store.fetch_one(f"SELECT COUNT(*) AS n FROM {table}")
    return row["n"]


class FakeMailer:
    def __init__(self, fail_for: set[str] | None = None, delay: float = 0.0) -> None:
        self.fail_for = fail_for or set()
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def send(
        self,
        template_key: str,
        customer_id: str,
        recipient_email: str,
        template_data: dict[str, Any],
    ) -> SendResult:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append(
                {
                    "template_key": template_key,
                    "customer_id": customer_id,
                    "to": recipient_email,
                    "data": template_data,
                }
            )
        if recipient_email in self.fail_for:
            return SendResult(success=False, error="mailbox unavailable")
        return SendResult(success=True, message_id=f"msg-{len(self.calls)}")
