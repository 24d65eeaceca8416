from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from drip.domain.rules import Scalar, ValidationError


@dataclass(frozen=True)
class LineItem:
    name: str
    product_id: str | None = None
    image_url: str | None = None


def parse_line_items(raw: Any) -> tuple[LineItem, ...]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError("order items are not valid JSON.") from exc
    if not isinstance(raw, list):
        raise ValidationError("order items must be a list.")
    items: list[LineItem] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ValidationError("order item is missing a name.")
        items.append(
            LineItem(
                name=str(entry["name"]),
                product_id=entry.get("productId") or entry.get("product_id"),
                image_url=entry.get("imageUrl") or entry.get("image_url"),
            )
        )
    return tuple(items)


@dataclass(frozen=True)
class Order:
    order_id: str
    customer_id: str | None
    customer_email: str | None
    status: str
    raw_items: str
    created_at: datetime

    def line_items(self) -> tuple[LineItem, ...]:
        """Parse the stored items; raises ``ValidationError`` when malformed."""
        return parse_line_items(self.raw_items)


@dataclass(frozen=True)
class Customer:
    customer_id: str
    email: str
    display_name: str | None
    marketing_consent: bool
    created_at: datetime


@dataclass(frozen=True)
class BehavioralEvent:
    event_id: str
    event_type: str
    occurred_at: datetime
    properties: dict[str, Scalar]
    anonymous_id: str | None
    customer_id: str | None

    @property
    def subject(self) -> str:
        return self.customer_id or self.anonymous_id or ""


@dataclass(frozen=True)
class SendKey:
    customer_id: str
    template_key: str
    step: int
    related_entity_id: str | None = None

    def params(self) -> tuple[str, str, int, str]:
        # The empty string stands in for "no related entity" so the key stays unique.
        return (self.customer_id, self.template_key, self.step, self.related_entity_id or "")


@dataclass(frozen=True)
class SendRecord:
    key: SendKey
    recipient_email: str
    message_id: str | None
    sent_at: datetime


@dataclass(frozen=True)
class Candidate:
    """An order/customer pair under evaluation for one step."""

    customer_id: str
    email: str
    related_entity_id: str | None
    anchor_at: datetime
    display_name: str | None = None
    order: Order | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        if self.related_entity_id is not None:
            return f"Order {self.related_entity_id}"
        return f"Customer {self.customer_id}"

    def key(self, template_key: str, step: int) -> SendKey:
        return SendKey(self.customer_id, template_key, step, self.related_entity_id)
