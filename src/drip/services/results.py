from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from drip.domain.campaigns import Campaign


@dataclass
class StepResult:
    sent: int = 0
    skipped: int = 0
    deferred: int = 0
    errors: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_sent(self) -> None:
        with self._lock:
            self.sent += 1

    def add_skipped(self) -> None:
        with self._lock:
            self.skipped += 1

    def add_deferred(self) -> None:
        with self._lock:
            self.deferred += 1

    def add_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    def summary(self) -> dict[str, int]:
        return {
            "sent": self.sent,
            "skipped": self.skipped,
            "errors": len(self.errors),
            "deferred": self.deferred,
        }


@dataclass
class JobRunResult:
    job: str
    dry_run: bool
    steps: dict[int, StepResult]
    multi_step: bool = False
    timed_out: bool = False

    @classmethod
    def for_campaign(cls, campaign: Campaign, dry_run: bool) -> JobRunResult:
        return cls(
            job=campaign.name,
            dry_run=dry_run,
            steps={s.step: StepResult() for s in campaign.steps},
            multi_step=campaign.multi_step,
        )

    @property
    def sent(self) -> int:
        return sum(s.sent for s in self.steps.values())

    @property
    def skipped(self) -> int:
        return sum(s.skipped for s in self.steps.values())

    @property
    def deferred(self) -> int:
        return sum(s.deferred for s in self.steps.values())

    @property
    def errors(self) -> list[str]:
        return self.error_details()

    def step(self, number: int) -> StepResult:
        return self.steps[number]

    def error_details(self) -> list[str]:
        if not self.multi_step:
            return [e for s in self.steps.values() for e in s.errors]
        return [
            f"[step{number}] {message}"
            for number, result in sorted(self.steps.items())
            for message in result.errors
        ]

    def results_payload(self) -> dict[str, Any]:
        if not self.multi_step:
            (only,) = self.steps.values()
            return only.summary()
        return {f"step{n}": r.summary() for n, r in sorted(self.steps.items())}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "job": self.job,
            "dryRun": self.dry_run,
            "timedOut": self.timed_out,
            "results": self.results_payload(),
        }
        details = self.error_details()
        if details:
            payload["errorDetails"] = details
        return payload
