from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class EventType(str, Enum):
    PRODUCT_VIEW = "product_view"
    ADD_TO_CART = "add_to_cart"
    REMOVE_FROM_CART = "remove_from_cart"
    CHECKOUT_STARTED = "checkout_started"
    CHECKOUT_COMPLETED = "checkout_completed"
    ORDER_PLACED = "order_placed"
    EMAIL_OPEN = "email_open"
    EMAIL_CLICK = "email_click"
    PAGE_VIEW = "page_view"
    SIGNUP = "signup"


class TemplateKey(str, Enum):
    REVIEW_REQUEST = "review_request"
    WINBACK_STEP_1 = "winback_step_1"
    WINBACK_STEP_2 = "winback_step_2"


class Anchor(str, Enum):
    ORDER_COMPLETED = "order_completed"
    LAST_ORDER = "last_order"
    PREVIOUS_STEP_SENT = "previous_step_sent"
