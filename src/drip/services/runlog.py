from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from drip.services.results import JobRunResult


@dataclass
class RunLogger:
    path: Path
    workspace: str
    enabled: bool = True

    def log(
        self,
        result: JobRunResult,
        *,
        duration_ms: int,
        trigger: str,
    ) -> None:
        if not self.enabled:
            return
        payload = {
            "ts": datetime.now(UTC).replace(microsecond=0).isoformat(),
            "workspace": self.workspace,
            "trigger": trigger,
            "durationMs": duration_ms,
            **result.to_dict(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")
