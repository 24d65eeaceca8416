from __future__ import annotations

import logging
from datetime import datetime

from drip.adapters.mailer.client import Mailer
from drip.config import JobConfig
from drip.domain.campaigns import CAMPAIGNS, Campaign
from drip.services.results import JobRunResult
from drip.services.sequencer import run_campaign
from drip.services.utils import utc_now
from drip.store.sqlite import SqliteStore


class JobError(LookupError):
    pass


def job_names() -> list[str]:
    return sorted(CAMPAIGNS)


def get_campaign(name: str) -> Campaign:
    try:
        return CAMPAIGNS[name]
    except KeyError as exc:
        raise JobError(f"Unknown job: {name}. Known jobs: {', '.join(job_names())}") from exc


def run_job(
    name: str,
    store: SqliteStore,
    mailer: Mailer | None,
    now: datetime | None = None,
    dry_run: bool = False,
    config: JobConfig | None = None,
    logger: logging.Logger | None = None,
) -> JobRunResult:
    campaign = get_campaign(name)
    return run_campaign(
        store,
        mailer,
        campaign,
        now=now or utc_now(),
        dry_run=dry_run,
        config=config,
        logger=logger,
    )
