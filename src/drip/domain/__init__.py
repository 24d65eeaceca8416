from drip.domain.models import (
    BehavioralEvent,
    Candidate,
    Customer,
    LineItem,
    Order,
    SendKey,
    SendRecord,
)
from drip.domain.rules import ValidationError

__all__ = [
    "BehavioralEvent",
    "Candidate",
    "Customer",
    "LineItem",
    "Order",
    "SendKey",
    "SendRecord",
    "ValidationError",
]
