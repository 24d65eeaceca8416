import shutil
from pathlib import Path

from typer.testing import CliRunner

from drip.cli import app
from drip.services import consent
from drip.store.sqlite import SqliteStore
from factories import SCHEMA_PATH, add_customer, add_order, count_rows

runner = CliRunner()


def _workspace(tmp_path: Path, monkeypatch) -> SqliteStore:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DRIPOPS_WORKSPACE", raising=False)
    schema_dir = tmp_path / "resources" / "schema"
    schema_dir.mkdir(parents=True)
    shutil.copy(SCHEMA_PATH, schema_dir / SCHEMA_PATH.name)

    assert runner.invoke(app, ["workspace", "add", "demo"]).exit_code == 0
    assert runner.invoke(app, ["schema", "apply"]).exit_code == 0
    return SqliteStore(tmp_path / "workspaces" / "demo" / "local.sqlite")


def test_job_list_names_campaigns() -> None:
    result = runner.invoke(app, ["job", "list"])
    assert result.exit_code == 0
    assert "review-request" in result.output
    assert "winback" in result.output


def test_job_run_defaults_to_dry_run(tmp_path: Path, monkeypatch) -> None:
    store = _workspace(tmp_path, monkeypatch)
    customer_id = add_customer(store)
    add_order(store, customer_id, "2024-03-06T12:00:00+00:00")

    result = runner.invoke(app, ["job", "run", "review-request", "--now", "2024-03-15"])

    assert result.exit_code == 0
    assert "DRY RUN" in result.output
    assert "step1 | sent=1 skipped=0 errors=0 deferred=0" in result.output
    assert count_rows(store, "send_records") == 0
    assert (tmp_path / "workspaces" / "demo" / "runs.ndjson").exists()


def test_job_run_unknown_job(tmp_path: Path, monkeypatch) -> None:
    _workspace(tmp_path, monkeypatch)
    result = runner.invoke(app, ["job", "run", "cart-abandonment"])
    assert result.exit_code == 1


def test_send_without_mailer_fails(tmp_path: Path, monkeypatch) -> None:
    _workspace(tmp_path, monkeypatch)
    result = runner.invoke(app, ["job", "run", "winback", "--send"])
    assert result.exit_code == 1


def test_consent_set(tmp_path: Path, monkeypatch) -> None:
    store = _workspace(tmp_path, monkeypatch)
    customer_id = add_customer(store)

    result = runner.invoke(app, ["consent", "set", customer_id, "--revoke"])

    assert result.exit_code == 0
    assert not consent.has_consent(store, customer_id)
    assert runner.invoke(app, ["consent", "set", "ghost", "--grant"]).exit_code == 1


def test_job_run_store_error_exits_cleanly(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DRIPOPS_WORKSPACE", raising=False)
    assert runner.invoke(app, ["workspace", "add", "bare"]).exit_code == 0

    result = runner.invoke(app, ["job", "run", "review-request"])

    assert result.exit_code == 1
    assert "Store error" in result.output
    assert isinstance(result.exception, SystemExit)
