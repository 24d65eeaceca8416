from __future__ import annotations

import hashlib
import hmac

from drip.domain import rules
from drip.domain.models import Customer
from drip.services.utils import utc_now_iso
from drip.store.sqlite import SqliteStore


class ConsentError(RuntimeError):
    pass


class UnsubscribeError(ConsentError):
    pass


class InvalidTokenError(UnsubscribeError):
    pass


def is_eligible(customer: Customer) -> bool:
    return customer.marketing_consent is True


def get_customer(store: SqliteStore, customer_id: str) -> Customer | None:
    """Read the customer straight from the store; consent is never cached."""
    row = store.fetch_one(
        "SELECT customer_id, email, display_name, marketing_consent, created_at "
        "FROM customers WHERE customer_id = ?",
        (customer_id,),
    )
    if row is None:
        return None
    return Customer(
        customer_id=row["customer_id"],
        email=row["email"],
        display_name=row["display_name"],
        marketing_consent=bool(row["marketing_consent"]),
        created_at=rules.parse_datetime(row["created_at"], "created_at"),
    )


def has_consent(store: SqliteStore, customer_id: str) -> bool:
    customer = get_customer(store, customer_id)
    return customer is not None and is_eligible(customer)


def set_consent(store: SqliteStore, customer_id: str, granted: bool) -> None:
    rules.require(customer_id, "customer_id")
    changed = store.execute(
        "UPDATE customers SET marketing_consent = ?, updated_at = ? WHERE customer_id = ?",
        (1 if granted else 0, utc_now_iso(), customer_id),
    )
    if changed == 0:
        raise ConsentError(f"Customer not found: {customer_id}")


def unsubscribe_token(secret: str, customer_id: str, email: str) -> str:
    message = f"{customer_id}:{email.strip().lower()}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def unsubscribe(store: SqliteStore, secret: str, customer_id: str, email: str, token: str) -> None:
    """Revoke marketing consent for a signed unsubscribe link."""
    rules.require(customer_id, "customerId")
    rules.require(email, "email")
    rules.require(token, "token")
    expected = unsubscribe_token(secret, customer_id, email)
    if not hmac.compare_digest(expected.encode(), token.encode()):
        raise InvalidTokenError("Invalid unsubscribe token.")
    customer = get_customer(store, customer_id)
    if customer is None or customer.email.lower() != email.strip().lower():
        raise UnsubscribeError("Customer not found.")
    set_consent(store, customer_id, granted=False)
