from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

from drip.domain import rules
from drip.domain.models import SendKey, SendRecord
from drip.services.utils import to_iso, utc_now
from drip.store.sqlite import SqliteStore

KEY_WHERE = "customer_id = ? AND template_key = ? AND step = ? AND related_entity_id = ?"


def already_sent(store: SqliteStore, key: SendKey) -> bool:
    row = store.fetch_one(f"SELECT 1 FROM send_records WHERE {KEY_WHERE}", key.params())
    return row is not None


def claim(
    store: SqliteStore,
    key: SendKey,
    lease_seconds: int,
    now: datetime | None = None,
) -> str | None:
    """Take the exclusive right to attempt a send for ``key``.

    Returns a claim token, or ``None`` when another worker holds a live claim
    or the key has already been recorded. Expired claims are taken over.
    """
    now = now or utc_now()
    token = str(uuid4())
    cutoff = to_iso(now - timedelta(seconds=lease_seconds))
    with store.session() as session:
        acquired = session.execute(
            "INSERT INTO send_claims (customer_id, template_key, step, related_entity_id, "
            "claim_token, claimed_at) VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(customer_id, template_key, step, related_entity_id) DO UPDATE SET "
            "claim_token = excluded.claim_token, claimed_at = excluded.claimed_at "
            "WHERE send_claims.claimed_at < ?",
            (*key.params(), token, to_iso(now), cutoff),
        )
        if acquired != 1:
            return None
        # A worker may have recorded and released between our check and this claim.
        if session.fetch_one(f"SELECT 1 FROM send_records WHERE {KEY_WHERE}", key.params()):
            session.execute(
                f"DELETE FROM send_claims WHERE {KEY_WHERE} AND claim_token = ?",
                (*key.params(), token),
            )
            return None
    return token


def release(store: SqliteStore, key: SendKey, token: str) -> None:
    store.execute(
        f"DELETE FROM send_claims WHERE {KEY_WHERE} AND claim_token = ?",
        (*key.params(), token),
    )


def record_sent(
    store: SqliteStore,
    key: SendKey,
    recipient_email: str,
    message_id: str | None = None,
    claim_token: str | None = None,
    sent_at: datetime | None = None,
) -> bool:
    """Write the SendRecord for ``key``; a second write for the same key is a no-op.

    Returns ``True`` when this call created the record.
    """
    rules.require(recipient_email, "recipient_email")
    with store.session() as session:
        created = session.execute(
            "INSERT OR IGNORE INTO send_records (customer_id, template_key, step, "
            "related_entity_id, recipient_email, message_id, sent_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (*key.params(), recipient_email, message_id, to_iso(sent_at or utc_now())),
        )
        if claim_token is not None:
            session.execute(
                f"DELETE FROM send_claims WHERE {KEY_WHERE} AND claim_token = ?",
                (*key.params(), claim_token),
            )
    return created == 1


def list_send_records(store: SqliteStore, customer_id: str | None = None) -> list[SendRecord]:
    query = (
        "SELECT customer_id, template_key, step, related_entity_id, recipient_email, "
        "message_id, sent_at FROM send_records"
    )
    params: list[object] = []
    if customer_id:
        query += " WHERE customer_id = ?"
        params.append(customer_id)
    query += " ORDER BY sent_at, customer_id"
    return [
        SendRecord(
            key=SendKey(
                row["customer_id"],
                row["template_key"],
                row["step"],
                row["related_entity_id"] or None,
            ),
            recipient_email=row["recipient_email"],
            message_id=row["message_id"],
            sent_at=rules.parse_datetime(row["sent_at"], "sent_at"),
        )
        for row in store.fetch_all(query, params)
    ]
