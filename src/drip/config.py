from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from drip.domain.campaigns import TEMPLATES, TemplateBuilder

WORKSPACES_DIR = Path("workspaces")
CURRENT_WORKSPACE_FILE = WORKSPACES_DIR / ".current"
WORKSPACE_FILENAME = "workspace.yaml"

DEFAULT_TRIGGER_SECRET_ENV = "CRON_SHARED_SECRET"
DEFAULT_UNSUBSCRIBE_SECRET_ENV = "UNSUBSCRIBE_SECRET"


@dataclass(frozen=True)
class StoreConfig:
    sqlite_path: Path


@dataclass(frozen=True)
class MailerConfig:
    endpoint: str
    from_address: str
    api_key_env: str = "DRIP_MAILER_API_KEY"
    max_retries: int = 3
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class TriggerConfig:
    secret_env: str = DEFAULT_TRIGGER_SECRET_ENV

    def secret(self) -> str | None:
        value = os.getenv(self.secret_env)
        return value or None


@dataclass(frozen=True)
class JobConfig:
    """Per-invocation job settings passed explicitly into ``run_job``."""

    max_workers: int = 4
    deadline_seconds: float = 240.0
    claim_lease_seconds: int = 900
    templates: dict[str, TemplateBuilder] = field(default_factory=lambda: dict(TEMPLATES))


@dataclass(frozen=True)
class WorkspaceConfig:
    name: str
    store: StoreConfig
    mailer: MailerConfig | None
    trigger: TriggerConfig
    jobs: JobConfig
    unsubscribe_secret_env: str
    path: Path


class WorkspaceError(RuntimeError):
    pass


def ensure_workspaces_dir() -> None:
    WORKSPACES_DIR.mkdir(parents=True, exist_ok=True)


def set_current_workspace(name: str) -> None:
    ensure_workspaces_dir()
    CURRENT_WORKSPACE_FILE.write_text(f"{name}\n", encoding="utf-8")


def get_current_workspace_name() -> str:
    env_name = os.getenv("DRIPOPS_WORKSPACE")
    if env_name:
        return env_name
    if not CURRENT_WORKSPACE_FILE.exists():
        raise WorkspaceError("No active workspace. Run `dripops workspace use <name>`.")
    return CURRENT_WORKSPACE_FILE.read_text(encoding="utf-8").strip()


def workspace_path(name: str) -> Path:
    return WORKSPACES_DIR / name


def workspace_config_path(name: str) -> Path:
    return workspace_path(name) / WORKSPACE_FILENAME


def load_workspace(name: str | None = None) -> WorkspaceConfig:
    if name is None:
        name = get_current_workspace_name()
    return load_workspace_file(workspace_config_path(name), name)


def load_workspace_file(config_path: Path, name: str | None = None) -> WorkspaceConfig:
    if not config_path.exists():
        raise WorkspaceError(f"Workspace config not found: {config_path}")
    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise WorkspaceError("Workspace config must be a mapping.")
    return WorkspaceConfig(
        name=name or str(data.get("workspace") or config_path.parent.name),
        store=_parse_store(data.get("store"), config_path),
        mailer=_parse_mailer(data.get("mailer")),
        trigger=_parse_trigger(data.get("trigger")),
        jobs=_parse_jobs(data.get("jobs")),
        unsubscribe_secret_env=_parse_unsubscribe(data.get("unsubscribe")),
        path=config_path.parent,
    )


def write_workspace_config(name: str, mailer_endpoint: str | None) -> Path:
    ensure_workspaces_dir()
    ws_dir = workspace_path(name)
    ws_dir.mkdir(parents=True, exist_ok=True)
    config: dict[str, Any] = {
        "workspace": name,
        "store": {"sqlite_path": "./local.sqlite"},
        "mailer": {
            "endpoint": mailer_endpoint or "",
            "from_address": "",
            "api_key_env": "DRIP_MAILER_API_KEY",
            "max_retries": 3,
        },
        "trigger": {"secret_env": DEFAULT_TRIGGER_SECRET_ENV},
        "jobs": {"max_workers": 4, "deadline_seconds": 240, "claim_lease_seconds": 900},
        "unsubscribe": {"secret_env": DEFAULT_UNSUBSCRIBE_SECRET_ENV},
    }
    config_path = workspace_config_path(name)
    config_path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    return config_path


def _parse_store(store_data: Any, config_path: Path) -> StoreConfig:
    if not isinstance(store_data, dict):
        raise WorkspaceError("Invalid workspace store configuration.")
    sqlite_path_raw = store_data.get("sqlite_path")
    if not sqlite_path_raw:
        raise WorkspaceError("Workspace store.sqlite_path is required.")
    sqlite_path = _resolve_sqlite_path(sqlite_path_raw, config_path)
    if sqlite_path is None:
        raise WorkspaceError("Workspace store.sqlite_path must be a string.")
    return StoreConfig(sqlite_path=sqlite_path)


def _resolve_sqlite_path(sqlite_path_raw: Any, config_path: Path) -> Path | None:
    if not isinstance(sqlite_path_raw, str):
        return None
    raw_path = Path(sqlite_path_raw)
    if raw_path.is_absolute():
        return raw_path
    # Prefer paths relative to the workspace directory.
    workspace_dir = config_path.parent
    if raw_path.parts and raw_path.parts[0] == WORKSPACES_DIR.name:
        return (workspace_dir.parent.parent / raw_path).resolve()
    return (workspace_dir / raw_path).resolve()


def _parse_mailer(mailer_data: Any) -> MailerConfig | None:
    if mailer_data is None:
        return None
    if not isinstance(mailer_data, dict):
        raise WorkspaceError("Invalid workspace mailer configuration.")
    endpoint = mailer_data.get("endpoint") or ""
    if not endpoint:
        return None
    return MailerConfig(
        endpoint=str(endpoint),
        from_address=str(mailer_data.get("from_address") or ""),
        api_key_env=str(mailer_data.get("api_key_env") or "DRIP_MAILER_API_KEY"),
        max_retries=_positive_int(mailer_data.get("max_retries", 3), "mailer.max_retries"),
        timeout_seconds=float(mailer_data.get("timeout_seconds", 30)),
    )


def _parse_trigger(trigger_data: Any) -> TriggerConfig:
    if trigger_data is None:
        return TriggerConfig()
    if not isinstance(trigger_data, dict):
        raise WorkspaceError("Invalid workspace trigger configuration.")
    return TriggerConfig(secret_env=str(trigger_data.get("secret_env") or DEFAULT_TRIGGER_SECRET_ENV))


def _parse_jobs(jobs_data: Any) -> JobConfig:
    if jobs_data is None:
        return JobConfig()
    if not isinstance(jobs_data, dict):
        raise WorkspaceError("Invalid workspace jobs configuration.")
    deadline = jobs_data.get("deadline_seconds", 240)
    if not isinstance(deadline, (int, float)) or deadline <= 0:
        raise WorkspaceError("Workspace jobs.deadline_seconds must be a positive number.")
    return JobConfig(
        max_workers=_positive_int(jobs_data.get("max_workers", 4), "jobs.max_workers"),
        deadline_seconds=float(deadline),
        claim_lease_seconds=_positive_int(
            jobs_data.get("claim_lease_seconds", 900), "jobs.claim_lease_seconds"
        ),
    )


def _parse_unsubscribe(unsubscribe_data: Any) -> str:
    if unsubscribe_data is None:
        return DEFAULT_UNSUBSCRIBE_SECRET_ENV
    if not isinstance(unsubscribe_data, dict):
        raise WorkspaceError("Invalid workspace unsubscribe configuration.")
    return str(unsubscribe_data.get("secret_env") or DEFAULT_UNSUBSCRIBE_SECRET_ENV)


def _positive_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise WorkspaceError(f"Workspace {field_name} must be a positive integer.")
    return value
