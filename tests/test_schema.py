import sqlite3
from pathlib import Path

import pytest

from factories import SCHEMA_PATH, add_customer, make_store


def test_apply_schema_creates_tables(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    for table in ("customers", "orders", "events", "send_records", "send_claims"):
        row = store.fetch_one(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?", (table,)
        )
        assert row is not None, table


def test_foreign_keys_enforced(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    with pytest.raises(sqlite3.IntegrityError):
        store.execute(
            "INSERT INTO orders (order_id, customer_id, customer_email, status, items, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            ("order-1", "missing", "a@example.com", "completed", "[]", "2024-01-01T00:00:00+00:00"),
        )


def test_order_status_is_checked(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    with pytest.raises(sqlite3.IntegrityError):
        store.execute(
            "INSERT INTO orders (order_id, customer_id, customer_email, status, items, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            ("order-1", None, "a@example.com", "shipped", "[]", "2024-01-01T00:00:00+00:00"),
        )


def test_send_record_key_is_unique(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    insert = (
        "INSERT INTO send_records (customer_id, template_key, step, related_entity_id, "
        "recipient_email, sent_at) VALUES (?, ?, ?, ?, ?, ?)"
    )
    params = (customer_id, "winback_step_1", 1, "", "a@example.com", "2024-01-01T00:00:00+00:00")
    store.execute(insert, params)
    with pytest.raises(sqlite3.IntegrityError):
        store.execute(insert, params)


def test_apply_schema_is_repeatable(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    add_customer(store)
    store.apply_schema(SCHEMA_PATH)
    assert store.fetch_one("SELECT COUNT(*) AS n FROM customers")["n"] == 1
