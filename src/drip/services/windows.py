from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from drip.domain import rules
from drip.domain.campaigns import Campaign, CampaignStep
from drip.domain.models import Candidate, Order
from drip.domain.stages import Anchor, OrderStatus
from drip.services.utils import as_utc
from drip.store.sqlite import SqliteStore


@dataclass(frozen=True)
class Window:
    """Inclusive calendar-date window, evaluated in UTC."""

    start: date
    end: date

    def params(self) -> tuple[str, str]:
        return (self.start.isoformat(), self.end.isoformat())


def compute_window(now: datetime, min_days: int, max_days: int) -> Window:
    rules.validate_window(min_days, max_days)
    now = as_utc(now)
    return Window(
        start=(now - timedelta(days=max_days)).date(),
        end=(now - timedelta(days=min_days)).date(),
    )


def select_candidates(
    store: SqliteStore, now: datetime, min_days: int, max_days: int
) -> list[Order]:
    """Completed orders with an email whose creation date falls in the window."""
    window = compute_window(now, min_days, max_days)
    return [_row_to_order(row) for row in _window_orders(store, window)]


def candidates_for_step(
    store: SqliteStore, now: datetime, campaign: Campaign, step: CampaignStep
) -> list[Candidate]:
    window = compute_window(now, step.min_days, step.max_days)
    if step.anchor == Anchor.ORDER_COMPLETED:
        return _order_candidates(store, window)
    if step.anchor == Anchor.LAST_ORDER:
        return _last_order_candidates(store, window)
    if step.anchor == Anchor.PREVIOUS_STEP_SENT:
        previous = campaign.previous(step)
        if previous is None:
            raise rules.ValidationError(f"{campaign.name} {step.tag} has no previous step.")
        return _previous_step_candidates(store, window, previous)
    raise rules.ValidationError(f"Unsupported anchor: {step.anchor}")


def _window_orders(store: SqliteStore, window: Window) -> list[sqlite3.Row]:
    return store.fetch_all(
        "SELECT o.order_id, o.customer_id, o.customer_email, o.status, o.items, o.created_at, "
        "c.display_name FROM orders o LEFT JOIN customers c ON c.customer_id = o.customer_id "
        "WHERE o.status = ? AND o.customer_email IS NOT NULL "
        "AND date(o.created_at) BETWEEN ? AND ? "
        "ORDER BY o.created_at, o.order_id",
        (OrderStatus.COMPLETED.value, *window.params()),
    )


def _order_candidates(store: SqliteStore, window: Window) -> list[Candidate]:
    candidates: list[Candidate] = []
    for row in _window_orders(store, window):
        if row["customer_id"] is None:
            # Guest checkout: no consent record to consult.
            continue
        order = _row_to_order(row)
        candidates.append(
            Candidate(
                customer_id=row["customer_id"],
                email=row["customer_email"],
                related_entity_id=order.order_id,
                anchor_at=order.created_at,
                display_name=row["display_name"],
                order=order,
            )
        )
    return candidates


def _last_order_candidates(store: SqliteStore, window: Window) -> list[Candidate]:
    rows = store.fetch_all(
        "SELECT c.customer_id, c.email, c.display_name, c.created_at AS signup_at, "
        "lo.order_id, lo.customer_email, lo.status, lo.items, lo.created_at "
        "FROM customers c LEFT JOIN orders lo ON lo.order_id = ("
        "  SELECT o.order_id FROM orders o WHERE o.customer_id = c.customer_id AND o.status = ? "
        "  ORDER BY o.created_at DESC, o.order_id DESC LIMIT 1"
        ") "
        "WHERE (lo.order_id IS NOT NULL AND date(lo.created_at) BETWEEN ? AND ?) "
        "OR (lo.order_id IS NULL AND date(c.created_at) BETWEEN ? AND ?) "
        "ORDER BY c.customer_id",
        (OrderStatus.COMPLETED.value, *window.params(), *window.params()),
    )
    candidates: list[Candidate] = []
    for row in rows:
        order = _row_to_order(row) if row["order_id"] is not None else None
        anchor_at = order.created_at if order else rules.parse_datetime(row["signup_at"], "created_at")
        candidates.append(
            Candidate(
                customer_id=row["customer_id"],
                email=row["email"],
                related_entity_id=None,
                anchor_at=anchor_at,
                display_name=row["display_name"],
                order=order,
            )
        )
    return candidates


def _previous_step_candidates(
    store: SqliteStore, window: Window, previous: CampaignStep
) -> list[Candidate]:
    rows = store.fetch_all(
        "SELECT r.customer_id, r.related_entity_id, r.sent_at, c.email, c.display_name "
        "FROM send_records r JOIN customers c ON c.customer_id = r.customer_id "
        "WHERE r.template_key = ? AND r.step = ? AND date(r.sent_at) BETWEEN ? AND ? "
        "ORDER BY r.sent_at, r.customer_id",
        (previous.template_key, previous.step, *window.params()),
    )
    return [
        Candidate(
            customer_id=row["customer_id"],
            email=row["email"],
            related_entity_id=row["related_entity_id"] or None,
            anchor_at=rules.parse_datetime(row["sent_at"], "sent_at"),
            display_name=row["display_name"],
            context={"previous_template_key": previous.template_key},
        )
        for row in rows
    ]


def _row_to_order(row: sqlite3.Row) -> Order:
    return Order(
        order_id=row["order_id"],
        customer_id=row["customer_id"],
        customer_email=row["customer_email"],
        status=row["status"],
        raw_items=row["items"] or "[]",
        created_at=rules.parse_datetime(row["created_at"], "created_at"),
    )
