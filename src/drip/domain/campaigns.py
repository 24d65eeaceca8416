from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from drip.domain import rules
from drip.domain.models import Candidate
from drip.domain.rules import ValidationError
from drip.domain.stages import Anchor, TemplateKey

TemplateBuilder = Callable[[Candidate, datetime], dict[str, Any]]


@dataclass(frozen=True)
class CampaignStep:
    step: int
    template_key: str
    min_days: int
    max_days: int
    anchor: Anchor = Anchor.ORDER_COMPLETED
    requires_items: bool = False

    def __post_init__(self) -> None:
        rules.validate_window(self.min_days, self.max_days)
        if self.step < 1:
            raise ValidationError("step numbers start at 1.")

    @property
    def tag(self) -> str:
        return f"step{self.step}"


@dataclass(frozen=True)
class Campaign:
    name: str
    steps: tuple[CampaignStep, ...]
    description: str = ""

    def __post_init__(self) -> None:
        numbers = [s.step for s in self.steps]
        if not numbers:
            raise ValidationError(f"Campaign {self.name} has no steps.")
        if numbers != sorted(set(numbers)):
            raise ValidationError(f"Campaign {self.name} steps must be unique and ascending.")
        if self.steps[0].anchor == Anchor.PREVIOUS_STEP_SENT:
            raise ValidationError(
                f"Campaign {self.name} cannot anchor its first step on a prior send."
            )

    @property
    def multi_step(self) -> bool:
        return len(self.steps) > 1

    def previous(self, step: CampaignStep) -> CampaignStep | None:
        index = self.steps.index(step)
        return self.steps[index - 1] if index > 0 else None


def first_name(display_name: str | None) -> str | None:
    if not display_name or not display_name.strip():
        return None
    return display_name.split()[0]


def review_request_data(candidate: Candidate, now: datetime) -> dict[str, Any]:
    if candidate.order is None:
        raise ValidationError("review request needs an order.")
    return {
        "firstName": first_name(candidate.display_name),
        "orderId": candidate.order.order_id,
        "items": [
            {"name": item.name, "imageUrl": item.image_url, "productId": item.product_id}
            for item in candidate.order.line_items()
        ],
    }


def winback_data(candidate: Candidate, now: datetime) -> dict[str, Any]:
    days_since = None
    if candidate.order is not None:
        days_since = (now - candidate.order.created_at).days
    return {"firstName": first_name(candidate.display_name), "daysSinceLastOrder": days_since}


TEMPLATES: dict[str, TemplateBuilder] = {
    TemplateKey.REVIEW_REQUEST.value: review_request_data,
    TemplateKey.WINBACK_STEP_1.value: winback_data,
    TemplateKey.WINBACK_STEP_2.value: winback_data,
}

REVIEW_REQUEST = Campaign(
    name="review-request",
    description="Ask for a product review 7-10 days after an order completes.",
    steps=(
        CampaignStep(
            step=1,
            template_key=TemplateKey.REVIEW_REQUEST.value,
            min_days=7,
            max_days=10,
            anchor=Anchor.ORDER_COMPLETED,
            requires_items=True,
        ),
    ),
)

WINBACK = Campaign(
    name="winback",
    description="Re-engage customers 30 and 60 days after their last order.",
    steps=(
        CampaignStep(1, TemplateKey.WINBACK_STEP_1.value, 30, 33, Anchor.LAST_ORDER),
        CampaignStep(2, TemplateKey.WINBACK_STEP_2.value, 60, 63, Anchor.LAST_ORDER),
    ),
)

CAMPAIGNS: dict[str, Campaign] = {c.name: c for c in (REVIEW_REQUEST, WINBACK)}
