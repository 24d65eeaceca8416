from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import uuid4

from drip.domain import rules
from drip.domain.models import BehavioralEvent
from drip.domain.stages import EventType
from drip.services.utils import to_iso, utc_now
from drip.store.sqlite import SqliteStore


class EventError(RuntimeError):
    pass


def track_event(
    store: SqliteStore,
    event_type: str,
    properties: Mapping[str, Any] | None = None,
    anonymous_id: str | None = None,
    customer_id: str | None = None,
    occurred_at: datetime | None = None,
) -> str:
    rules.require(event_type, "eventType")
    rules.validate_enum(event_type, [e.value for e in EventType], "eventType")
    cleaned = rules.validate_properties(properties)
    anonymous_id = (anonymous_id or "").strip() or None
    customer_id = (customer_id or "").strip() or None
    if customer_id is None and anonymous_id is None:
        raise EventError("Either a customer or an anonymousId is required.")
    if customer_id is not None:
        _require_customer(store, customer_id)
        # Known customers are the subject; the anonymous id is not kept.
        anonymous_id = None

    event_id = str(uuid4())
    store.execute(
        "INSERT INTO events (event_id, event_type, occurred_at, properties, anonymous_id, customer_id) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (
            event_id,
            event_type,
            to_iso(occurred_at or utc_now()),
            json.dumps(cleaned, sort_keys=True),
            anonymous_id,
            customer_id,
        ),
    )
    return event_id


def link_events(store: SqliteStore, anonymous_id: str, customer_id: str) -> int:
    """Attribute an anonymous visitor's unclaimed events to ``customer_id``.

    Events that already carry a customer are left alone, so repeating the call
    links nothing new. Returns the number of events re-pointed.
    """
    rules.require(anonymous_id, "anonymousId")
    rules.require(customer_id, "customerId")
    _require_customer(store, customer_id)
    return store.execute(
        "UPDATE events SET customer_id = ? WHERE anonymous_id = ? AND customer_id IS NULL",
        (customer_id, anonymous_id),
    )


def list_events(
    store: SqliteStore,
    customer_id: str | None = None,
    anonymous_id: str | None = None,
) -> list[BehavioralEvent]:
    clauses: list[str] = []
    params: list[object] = []
    if customer_id:
        clauses.append("customer_id = ?")
        params.append(customer_id)
    if anonymous_id:
        clauses.append("anonymous_id = ?")
        params.append(anonymous_id)
    query = "SELECT * FROM events"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY occurred_at, event_id"
    return [
        BehavioralEvent(
            event_id=row["event_id"],
            event_type=row["event_type"],
            occurred_at=rules.parse_datetime(row["occurred_at"], "occurred_at"),
            properties=json.loads(row["properties"] or "{}"),
            anonymous_id=row["anonymous_id"],
            customer_id=row["customer_id"],
        )
        for row in store.fetch_all(query, params)
    ]


def _require_customer(store: SqliteStore, customer_id: str) -> None:
    if store.fetch_one("SELECT 1 FROM customers WHERE customer_id = ?", (customer_id,)) is None:
        raise EventError(f"Customer not found: {customer_id}")
