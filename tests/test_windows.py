from datetime import UTC, date, datetime
from pathlib import Path

import pytest

from drip.domain.campaigns import WINBACK, Campaign, CampaignStep
from drip.domain.models import SendKey
from drip.domain.rules import ValidationError
from drip.domain.stages import Anchor
from drip.services import idempotency, windows
from factories import add_customer, add_order, make_store

NOW = datetime(2024, 3, 15, 9, 30, tzinfo=UTC)


def test_compute_window_is_inclusive_date_range() -> None:
    window = windows.compute_window(NOW, 7, 10)
    assert window.start == date(2024, 3, 5)
    assert window.end == date(2024, 3, 8)


def test_compute_window_rejects_inverted_offsets() -> None:
    with pytest.raises(ValidationError):
        windows.compute_window(NOW, 10, 7)


def test_select_candidates_window_edges(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    nine_days = add_order(store, customer_id, "2024-03-06T12:00:00+00:00")
    add_order(store, customer_id, "2024-03-09T12:00:00+00:00")
    add_order(store, customer_id, "2024-03-04T12:00:00+00:00")

    orders = windows.select_candidates(store, NOW, 7, 10)

    assert [o.order_id for o in orders] == [nine_days]


def test_select_candidates_requires_completed_with_email(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    add_order(store, customer_id, "2024-03-06T12:00:00+00:00", status="pending")
    add_order(store, customer_id, "2024-03-06T12:00:00+00:00", email=None)

    assert windows.select_candidates(store, NOW, 7, 10) == []


def test_order_anchor_skips_guest_orders(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store, name="Ada Lovelace")
    owned = add_order(store, customer_id, "2024-03-06T12:00:00+00:00")
    add_order(store, None, "2024-03-06T13:00:00+00:00", email="guest@example.com")
    step = CampaignStep(1, "review_request", 7, 10, Anchor.ORDER_COMPLETED)
    campaign = Campaign(name="reviews", steps=(step,))

    candidates = windows.candidates_for_step(store, NOW, campaign, step)

    assert [c.related_entity_id for c in candidates] == [owned]
    assert candidates[0].display_name == "Ada Lovelace"
    assert candidates[0].label == f"Order {owned}"


def test_last_order_anchor_uses_latest_order_or_signup(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    now = datetime(2024, 2, 1, 8, tzinfo=UTC)
    recent = add_customer(store)
    add_order(store, recent, "2023-11-01T10:00:00+00:00")
    last = add_order(store, recent, "2024-01-01T10:00:00+00:00")
    older = add_customer(store)
    add_order(store, older, "2023-12-01T10:00:00+00:00")
    never_ordered = add_customer(store, created_at="2024-01-01T10:00:00+00:00")
    pending_only = add_customer(store, created_at="2020-01-01T10:00:00+00:00")
    add_order(store, pending_only, "2024-01-01T10:00:00+00:00", status="pending")

    step1 = WINBACK.steps[0]
    candidates = windows.candidates_for_step(store, now, WINBACK, step1)
    by_customer = {c.customer_id: c for c in candidates}

    assert set(by_customer) == {recent, never_ordered}
    assert by_customer[recent].order.order_id == last
    assert by_customer[recent].related_entity_id is None
    assert by_customer[never_ordered].order is None


def test_previous_step_anchor_follows_send_records(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    other = add_customer(store)
    first = CampaignStep(1, "review_request", 7, 10)
    second = CampaignStep(2, "winback_step_1", 3, 5, Anchor.PREVIOUS_STEP_SENT)
    campaign = Campaign(name="nurture", steps=(first, second))
    idempotency.record_sent(
        store,
        SendKey(customer_id, "review_request", 1, "order-1"),
        "a@example.com",
        sent_at=datetime(2024, 3, 11, 9, tzinfo=UTC),
    )
    idempotency.record_sent(
        store,
        SendKey(other, "review_request", 1, "order-2"),
        "b@example.com",
        sent_at=datetime(2024, 3, 14, 9, tzinfo=UTC),
    )

    candidates = windows.candidates_for_step(store, NOW, campaign, second)

    assert [c.customer_id for c in candidates] == [customer_id]
    assert candidates[0].related_entity_id == "order-1"


def test_empty_window_is_not_an_error(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    assert windows.select_candidates(store, NOW, 7, 10) == []


def test_campaign_steps_must_ascend() -> None:
    with pytest.raises(ValidationError):
        Campaign(
            name="broken",
            steps=(CampaignStep(2, "a", 1, 2), CampaignStep(1, "b", 3, 4)),
        )
    with pytest.raises(ValidationError):
        Campaign(name="broken", steps=(CampaignStep(1, "a", 1, 2, Anchor.PREVIOUS_STEP_SENT),))
