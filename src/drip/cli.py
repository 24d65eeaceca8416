from __future__ import annotations

import json
import shutil
import sqlite3
import time
from pathlib import Path

import typer

from drip import __version__
from drip.adapters.mailer.client import HttpMailer
from drip.config import (
    WorkspaceError,
    ensure_workspaces_dir,
    load_workspace,
    set_current_workspace,
    workspace_config_path,
    write_workspace_config,
)
from drip.domain import rules
from drip.domain.rules import ValidationError
from drip.services import consent, events, exports, idempotency, jobs
from drip.services.consent import ConsentError
from drip.services.events import EventError
from drip.services.jobs import JobError
from drip.services.runlog import RunLogger
from drip.services.utils import start_of_day, today_iso, utc_now
from drip.store.sqlite import SqliteStore

app = typer.Typer(help="Dripops CLI")
workspace_app = typer.Typer(help="Workspace management")
schema_app = typer.Typer(help="Schema operations")
job_app = typer.Typer(help="Campaign jobs")
events_app = typer.Typer(help="Behavioral events")
consent_app = typer.Typer(help="Marketing consent")
sends_app = typer.Typer(help="Send records")
export_app = typer.Typer(help="Exports")

app.add_typer(workspace_app, name="workspace")
app.add_typer(schema_app, name="schema")
app.add_typer(job_app, name="job")
app.add_typer(events_app, name="events")
app.add_typer(consent_app, name="consent")
app.add_typer(sends_app, name="sends")
app.add_typer(export_app, name="export")

SCHEMA_PATH = Path("resources/schema/canonical.yaml")


@app.callback()
def version_callback(version: bool = typer.Option(False, "--version", help="Show version and exit.")):
    if version:
        typer.echo(__version__)
        raise typer.Exit()


@app.command("init")
def init() -> None:
    """Initialize directories for workspaces and outputs."""
    ensure_workspaces_dir()
    Path("data").mkdir(exist_ok=True)
    Path("exports").mkdir(exist_ok=True)
    typer.echo("Initialized dripops directories.")


@workspace_app.command("add")
def workspace_add(
    name: str = typer.Argument(...),
    mailer_endpoint: str | None = typer.Option(
        None, "--mailer-endpoint", help="HTTP endpoint of the email relay."
    ),
    use: bool = typer.Option(True, "--use/--no-use", help="Set as current workspace."),
    force: bool = typer.Option(
        False, "--force", help="Overwrite existing workspace config if it exists."
    ),
) -> None:
    config_path = workspace_config_path(name)
    if config_path.exists() and not force:
        raise typer.BadParameter(
            f"Workspace already exists: {config_path}. Use --force to overwrite."
        )
    config_path = write_workspace_config(name, mailer_endpoint)
    if use:
        set_current_workspace(name)
    typer.echo(f"Workspace created: {config_path}")


@workspace_app.command("use")
def workspace_use(name: str = typer.Argument(...)) -> None:
    if not workspace_config_path(name).exists():
        raise typer.BadParameter(f"Workspace config not found: {workspace_config_path(name)}")
    set_current_workspace(name)
    typer.echo(f"Active workspace: {name}")


@schema_app.command("apply")
def schema_apply() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    store.apply_schema(SCHEMA_PATH)
    typer.echo("Applied schema to local SQLite.")


@job_app.command("list")
def job_list() -> None:
    for name in jobs.job_names():
        campaign = jobs.get_campaign(name)
        windows = ", ".join(
            f"{s.tag} {s.template_key} {s.min_days}-{s.max_days}d ({s.anchor.value})"
            for s in campaign.steps
        )
        typer.echo(f"{name} | {windows}")


@job_app.command("run")
def job_run(
    name: str = typer.Argument(..., help="Job name, see `dripops job list`."),
    send: bool = typer.Option(
        False, "--send/--dry-run", help="Send for real (default is a dry run)."
    ),
    now: str | None = typer.Option(None, "--now", help="Evaluate windows as of YYYY-MM-DD."),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output."),
    runlog: bool = typer.Option(
        True, "--runlog/--no-runlog", help="Append the run summary to the workspace run log."
    ),
) -> None:
    """Run one campaign job against the active workspace."""
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        as_of = rules.parse_date(now, "now")
        mailer = None
        if send:
            if ws.mailer is None:
                _exit_with_error("Workspace mailer is not configured.")
            mailer = HttpMailer.from_config(ws.mailer)
        started = time.monotonic()
        result = jobs.run_job(
            name,
            store,
            mailer,
            now=start_of_day(as_of) if as_of else utc_now(),
            dry_run=not send,
            config=ws.jobs,
        )
    except (JobError, ValidationError, WorkspaceError) as exc:
        _exit_with_error(str(exc))
    except sqlite3.Error as exc:
        _exit_with_error(f"Store error: {exc}")
    duration_ms = int((time.monotonic() - started) * 1000)
    RunLogger(path=ws.path / "runs.ndjson", workspace=ws.name, enabled=runlog).log(
        result, duration_ms=duration_ms, trigger="cli"
    )

    if json_output:
        typer.echo(json.dumps({"durationMs": duration_ms, **result.to_dict()}, indent=2))
    else:
        if result.dry_run:
            typer.echo("DRY RUN: no messages were sent.")
        for number, step_result in sorted(result.steps.items()):
            summary = step_result.summary()
            typer.echo(
                f"step{number} | sent={summary['sent']} skipped={summary['skipped']} "
                f"errors={summary['errors']} deferred={summary['deferred']}"
            )
        for detail in result.error_details():
            typer.echo(f"  {detail}")
        if result.timed_out:
            typer.echo("Deadline reached; remaining candidates are left for the next run.")
    if result.error_details():
        raise typer.Exit(code=1)


@events_app.command("link")
def events_link(
    anonymous_id: str = typer.Argument(...),
    customer_id: str = typer.Argument(...),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        linked = events.link_events(store, anonymous_id, customer_id)
    except (EventError, ValidationError) as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Linked events: {linked}")


@events_app.command("list")
def events_list(
    customer: str | None = typer.Option(None, "--customer"),
    anonymous: str | None = typer.Option(None, "--anonymous"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    for event in events.list_events(store, customer_id=customer, anonymous_id=anonymous):
        typer.echo(
            f"{event.occurred_at.isoformat()} | {event.event_type} | {event.subject} | "
            f"{json.dumps(event.properties, sort_keys=True)}"
        )


@consent_app.command("set")
def consent_set(
    customer_id: str = typer.Argument(...),
    grant: bool = typer.Option(..., "--grant/--revoke"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        consent.set_consent(store, customer_id, grant)
    except (ConsentError, ValidationError) as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Marketing consent {'granted' if grant else 'revoked'}: {customer_id}")


@sends_app.command("list")
def sends_list(customer: str | None = typer.Option(None, "--customer")) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    records = idempotency.list_send_records(store, customer_id=customer)
    if not records:
        typer.echo("No send records.")
        return
    for record in records:
        key = record.key
        typer.echo(
            f"{record.sent_at.isoformat()} | {key.customer_id} | {key.template_key} | "
            f"step{key.step} | {key.related_entity_id or '-'} | {record.recipient_email}"
        )


@export_app.command("excel")
def export_excel(out: str = typer.Option(..., "--out")) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    exports.export_excel(store, Path(out))
    typer.echo(f"Exported Excel to {out}")


@app.command("snapshot")
def snapshot() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    snapshot_dir = Path("data") / "snapshots" / today_iso()
    snapshot_dir.mkdir(parents=True, exist_ok=True)
    if ws.store.sqlite_path.exists():
        shutil.copy2(ws.store.sqlite_path, snapshot_dir / "local.sqlite")
    exports.export_csv_tables(store, snapshot_dir)
    typer.echo(f"Snapshot created at {snapshot_dir}")


def _load_workspace():
    try:
        return load_workspace()
    except WorkspaceError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1) from exc


def _exit_with_error(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
