from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from drip.adapters.mailer.client import Mailer
from drip.config import JobConfig
from drip.domain.campaigns import Campaign
from drip.domain.models import Candidate
from drip.logs import get_logger
from drip.services import windows
from drip.services.execution import ExecutionController, Outcome, RunReservations
from drip.services.results import JobRunResult, StepResult
from drip.services.utils import as_utc
from drip.store.sqlite import SqliteStore


def run_campaign(
    store: SqliteStore,
    mailer: Mailer | None,
    campaign: Campaign,
    now: datetime,
    dry_run: bool = False,
    config: JobConfig | None = None,
    logger: logging.Logger | None = None,
) -> JobRunResult:
    """Evaluate every step of ``campaign`` in ascending order.

    Each step selects its own candidates; the steps share one idempotency
    store but not each other's keys, so step 2 does not wait on step 1.
    Candidate fetch failures propagate; per-candidate failures are recorded
    on the step and never stop the run.
    """
    config = config or JobConfig()
    logger = logger or get_logger("drip.jobs")
    now = as_utc(now)
    missing = [s.template_key for s in campaign.steps if s.template_key not in config.templates]
    if missing:
        raise KeyError(f"No template registered for {', '.join(missing)}")
    deadline = time.monotonic() + config.deadline_seconds
    result = JobRunResult.for_campaign(campaign, dry_run)
    reservations = RunReservations()

    for step in campaign.steps:
        step_result = result.step(step.step)
        if time.monotonic() >= deadline:
            result.timed_out = True
            logger.warning("deadline reached before %s", step.tag, extra={"job": campaign.name})
            continue
        template = config.templates[step.template_key]
        candidates = windows.candidates_for_step(store, now, campaign, step)
        controller = ExecutionController(
            store=store,
            mailer=mailer,
            job=campaign.name,
            step=step,
            template=template,
            now=now,
            dry_run=dry_run,
            lease_seconds=config.claim_lease_seconds,
            reservations=reservations,
            logger=logger,
        )
        _fan_out(controller, candidates, step_result, deadline, config.max_workers, logger)
        if step_result.deferred:
            result.timed_out = True
        logger.info(
            "%s %s: sent=%d skipped=%d errors=%d deferred=%d",
            campaign.name,
            step.tag,
            step_result.sent,
            step_result.skipped,
            len(step_result.errors),
            step_result.deferred,
            extra={"job": campaign.name, "step": step.step, "dry_run": dry_run},
        )
    return result


def _fan_out(
    controller: ExecutionController,
    candidates: list[Candidate],
    step_result: StepResult,
    deadline: float,
    max_workers: int,
    logger: logging.Logger,
) -> None:
    if not candidates:
        return

    def process(candidate: Candidate) -> None:
        if time.monotonic() >= deadline:
            step_result.add_deferred()
            return
        try:
            execution = controller.execute(candidate)
        except Exception as exc:
            message = f"{candidate.label}: {exc}"
            logger.warning(
                "%s",
                message,
                extra={"job": controller.job, "step": controller.step.step},
            )
            step_result.add_error(message)
            return
        if execution.outcome == Outcome.SENT:
            step_result.add_sent()
            if execution.warning:
                step_result.add_error(f"{candidate.label}: {execution.warning}")
        elif execution.outcome == Outcome.SKIPPED:
            step_result.add_skipped()
        else:
            step_result.add_error(f"{candidate.label}: {execution.detail}")

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        # list() surfaces anything raised outside process().
        list(pool.map(process, candidates))
