from datetime import UTC, datetime, timedelta
from pathlib import Path

from drip.domain.models import SendKey
from drip.services import idempotency
from factories import add_customer, count_rows, make_store


def test_record_sent_is_once_per_key(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    key = SendKey(customer_id, "review_request", 1, "order-1")

    assert not idempotency.already_sent(store, key)
    assert idempotency.record_sent(store, key, "a@example.com", "msg-1") is True
    assert idempotency.record_sent(store, key, "a@example.com", "msg-2") is False

    assert idempotency.already_sent(store, key)
    assert count_rows(store, "send_records") == 1


def test_key_without_related_entity_is_still_unique(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    key = SendKey(customer_id, "winback_step_1", 1)

    idempotency.record_sent(store, key, "a@example.com")
    idempotency.record_sent(store, key, "a@example.com")

    assert count_rows(store, "send_records") == 1
    (record,) = idempotency.list_send_records(store, customer_id)
    assert record.key.related_entity_id is None


def test_steps_and_entities_are_separate_keys(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    idempotency.record_sent(store, SendKey(customer_id, "winback_step_1", 1), "a@example.com")

    assert not idempotency.already_sent(store, SendKey(customer_id, "winback_step_2", 2))
    assert not idempotency.already_sent(
        store, SendKey(customer_id, "winback_step_1", 1, "order-9")
    )


def test_claim_is_exclusive_until_released(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    key = SendKey("cust-1", "review_request", 1, "order-1")

    token = idempotency.claim(store, key, lease_seconds=900)
    assert token is not None
    assert idempotency.claim(store, key, lease_seconds=900) is None

    idempotency.release(store, key, token)
    assert idempotency.claim(store, key, lease_seconds=900) is not None


def test_expired_claim_can_be_taken_over(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    key = SendKey("cust-1", "review_request", 1, "order-1")
    then = datetime(2024, 3, 1, 9, tzinfo=UTC)

    stale = idempotency.claim(store, key, lease_seconds=60, now=then)
    fresh = idempotency.claim(store, key, lease_seconds=60, now=then + timedelta(seconds=61))

    assert stale is not None
    assert fresh is not None
    assert fresh != stale
    # The stale holder can no longer drop the new claim.
    idempotency.release(store, key, stale)
    assert idempotency.claim(store, key, lease_seconds=60, now=then + timedelta(seconds=62)) is None


def test_claim_after_record_is_refused(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    key = SendKey(customer_id, "review_request", 1, "order-1")
    token = idempotency.claim(store, key, lease_seconds=900)

    idempotency.record_sent(store, key, "a@example.com", claim_token=token)

    assert count_rows(store, "send_claims") == 0
    assert idempotency.claim(store, key, lease_seconds=900) is None
    assert count_rows(store, "send_claims") == 0
