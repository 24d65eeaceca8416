"""
HTTP surface: scheduled job triggers, event tracking and unsubscribe.

Run with ``uvicorn --factory drip.api:app_from_env``.
"""
from __future__ import annotations

import hmac
import os
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from drip import __version__
from drip.adapters.mailer.client import HttpMailer, Mailer
from drip.config import WorkspaceConfig, WorkspaceError, load_workspace
from drip.domain.rules import ValidationError
from drip.logs import get_logger
from drip.services import consent, events
from drip.services.consent import InvalidTokenError, UnsubscribeError
from drip.services.events import EventError
from drip.services.jobs import JobError, get_campaign, run_job
from drip.services.runlog import RunLogger
from drip.services.utils import utc_now
from drip.store.sqlite import SqliteStore

CRON_HEADER = "X-CRON-KEY"
CUSTOMER_HEADER = "X-Customer-Id"

log = get_logger("drip.api")


def create_app(
    workspace: WorkspaceConfig,
    mailer: Mailer | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    app = FastAPI(title="dripops", version=__version__)
    store = SqliteStore(workspace.store.sqlite_path)
    run_logger = RunLogger(path=workspace.path / "runs.ndjson", workspace=workspace.name)

    def resolve_mailer() -> Mailer:
        if mailer is not None:
            return mailer
        if workspace.mailer is None:
            raise WorkspaceError("Workspace mailer is not configured.")
        return HttpMailer.from_config(workspace.mailer)

    def check_secret(request: Request, allow_bearer: bool) -> JSONResponse | None:
        secret = workspace.trigger.secret()
        if not secret:
            log.warning("%s is not configured", workspace.trigger.secret_env)
            return _error(503, "Trigger secret is not configured")
        provided = [request.headers.get(CRON_HEADER) or ""]
        if allow_bearer:
            auth = request.headers.get("Authorization") or ""
            if auth.startswith("Bearer "):
                provided.append(auth[len("Bearer ") :])
        expected = secret.encode()
        if not any(hmac.compare_digest(value.encode(), expected) for value in provided if value):
            return _error(401, "Unauthorized")
        return None

    def run(job: str, dry_run: bool, trigger: str) -> JSONResponse:
        try:
            get_campaign(job)
        except JobError as exc:
            return _error(404, str(exc))
        started = time.monotonic()
        try:
            job_mailer = None if dry_run else resolve_mailer()
        except WorkspaceError as exc:
            return _error(503, str(exc))
        try:
            result = run_job(
                job, store, job_mailer, now=clock(), dry_run=dry_run, config=workspace.jobs
            )
        except Exception as exc:
            log.exception("%s job failed", job, extra={"job": job})
            return JSONResponse({"success": False, "error": str(exc)}, status_code=500)
        duration_ms = int((time.monotonic() - started) * 1000)
        run_logger.log(result, duration_ms=duration_ms, trigger=trigger)

        body: dict[str, Any] = {
            "success": True,
            "dryRun": dry_run,
            "durationMs": duration_ms,
            "results": result.results_payload(),
        }
        if result.timed_out:
            body["timedOut"] = True
        details = result.error_details()
        if details:
            body["errorDetails"] = details
        return JSONResponse(body)

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        return {"status": "healthy", "version": __version__, "timestamp": utc_now().isoformat()}

    @app.post("/api/cron/{job}")
    async def cron_post(job: str, request: Request) -> JSONResponse:
        denied = check_secret(request, allow_bearer=False)
        if denied is not None:
            return denied
        body = await _json_body(request)
        dry_run = isinstance(body, dict) and body.get("dryRun") is True
        return await run_in_threadpool(run, job, dry_run, "http")

    @app.get("/api/cron/{job}")
    async def cron_get(job: str, request: Request) -> JSONResponse:
        denied = check_secret(request, allow_bearer=True)
        if denied is not None:
            return denied
        return await run_in_threadpool(run, job, False, "http")

    @app.post("/api/events")
    async def track(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if not isinstance(body, dict):
            return _error(400, "Invalid event data")
        try:
            event_id = await run_in_threadpool(
                events.track_event,
                store,
                body.get("eventType"),
                body.get("properties"),
                body.get("anonymousId"),
                request.headers.get(CUSTOMER_HEADER),
            )
        except (ValidationError, EventError) as exc:
            return _error(400, str(exc))
        return JSONResponse({"success": True, "eventId": event_id})

    @app.patch("/api/events")
    async def link(request: Request) -> JSONResponse:
        customer_id = request.headers.get(CUSTOMER_HEADER)
        if not customer_id:
            return _error(401, "Unauthorized")
        body = await _json_body(request)
        anonymous_id = body.get("anonymousId") if isinstance(body, dict) else None
        if not anonymous_id:
            return _error(400, "anonymousId is required")
        try:
            linked = await run_in_threadpool(events.link_events, store, anonymous_id, customer_id)
        except (ValidationError, EventError) as exc:
            return _error(400, str(exc))
        return JSONResponse({"success": True, "linkedEvents": linked})

    @app.post("/api/unsubscribe")
    async def unsubscribe(request: Request) -> JSONResponse:
        secret = os.getenv(workspace.unsubscribe_secret_env)
        if not secret:
            return _error(503, "Unsubscribe secret is not configured")
        body = await _json_body(request)
        if not isinstance(body, dict):
            return _error(400, "Missing required fields")
        try:
            await run_in_threadpool(
                consent.unsubscribe,
                store,
                secret,
                body.get("customerId") or "",
                body.get("email") or "",
                body.get("token") or "",
            )
        except ValidationError:
            return _error(400, "Missing required fields")
        except InvalidTokenError as exc:
            return _error(401, str(exc))
        except UnsubscribeError as exc:
            return _error(404, str(exc))
        return JSONResponse({"success": True})

    return app


def app_from_env() -> FastAPI:
    try:
        workspace = load_workspace()
    except WorkspaceError as exc:
        raise SystemExit(str(exc)) from exc
    return create_app(workspace)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)
