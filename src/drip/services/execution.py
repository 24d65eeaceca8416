from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from drip.adapters.mailer.client import Mailer
from drip.domain.campaigns import CampaignStep, TemplateBuilder
from drip.domain.models import Candidate
from drip.services import consent, idempotency
from drip.store.sqlite import SqliteStore


class Outcome(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class Execution:
    outcome: Outcome
    detail: str | None = None
    # Set when a send went out but its SendRecord could not be written.
    warning: str | None = None


class RunReservations:
    """Customers already messaged by the current run of one campaign."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._customers: set[str] = set()

    def reserve(self, customer_id: str) -> bool:
        with self._lock:
            if customer_id in self._customers:
                return False
            self._customers.add(customer_id)
            return True

    def release(self, customer_id: str) -> None:
        with self._lock:
            self._customers.discard(customer_id)


class ExecutionController:
    def __init__(
        self,
        store: SqliteStore,
        mailer: Mailer | None,
        job: str,
        step: CampaignStep,
        template: TemplateBuilder,
        now: datetime,
        dry_run: bool,
        lease_seconds: int,
        reservations: RunReservations,
        logger: logging.Logger,
    ) -> None:
        if not dry_run and mailer is None:
            raise ValueError("A mailer is required unless running dry.")
        self.store = store
        self.mailer = mailer
        self.job = job
        self.step = step
        self.template = template
        self.now = now
        self.dry_run = dry_run
        self.lease_seconds = lease_seconds
        self.reservations = reservations
        self.logger = logger

    def execute(self, candidate: Candidate) -> Execution:
        step = self.step
        key = candidate.key(step.template_key, step.step)
        extra = {
            "job": self.job,
            "step": step.step,
            "customer_id": candidate.customer_id,
            "related_entity_id": candidate.related_entity_id,
            "dry_run": self.dry_run,
        }

        if idempotency.already_sent(self.store, key):
            return Execution(Outcome.SKIPPED, "already sent")

        if step.requires_items and candidate.order is not None:
            if not candidate.order.line_items():
                return Execution(Outcome.SKIPPED, "no line items")

        template_data = self.template(candidate, self.now)

        if not consent.has_consent(self.store, candidate.customer_id):
            return Execution(Outcome.SKIPPED, "no marketing consent")

        if not self.reservations.reserve(candidate.customer_id):
            return Execution(Outcome.SKIPPED, "already messaged this run")

        if self.dry_run:
            self.logger.info(
                "[DRY RUN] would send %s to %s", step.template_key, candidate.email, extra=extra
            )
            return Execution(Outcome.SENT)

        token = idempotency.claim(self.store, key, self.lease_seconds)
        if token is None:
            self.reservations.release(candidate.customer_id)
            return Execution(Outcome.SKIPPED, "claimed by another run")

        try:
            result = self.mailer.send(
                step.template_key, candidate.customer_id, candidate.email, template_data
            )
        except Exception:
            idempotency.release(self.store, key, token)
            self.reservations.release(candidate.customer_id)
            raise
        if not result.success:
            idempotency.release(self.store, key, token)
            self.reservations.release(candidate.customer_id)
            return Execution(Outcome.ERROR, result.error or "Unknown error")

        try:
            idempotency.record_sent(
                self.store, key, candidate.email, result.message_id, claim_token=token
            )
        except Exception as exc:
            # The message is out; the claim stays behind until its lease expires.
            self.logger.error(
                "sent %s but failed to record it: %s", step.template_key, exc, extra=extra
            )
            return Execution(Outcome.SENT, warning=f"sent but not recorded: {exc}")

        self.logger.info("sent %s to %s", step.template_key, candidate.email, extra=extra)
        return Execution(Outcome.SENT)
