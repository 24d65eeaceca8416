from pathlib import Path

from openpyxl import load_workbook

from drip.domain.models import SendKey
from drip.services import exports, idempotency
from factories import add_customer, add_order, make_store


def test_export_excel_has_a_sheet_per_table(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    add_order(store, customer_id, "2024-03-06T12:00:00+00:00")
    out = tmp_path / "out" / "drip.xlsx"

    exports.export_excel(store, out)

    wb = load_workbook(out)
    assert wb.sheetnames == exports.TABLES
    assert wb["customers"]["A1"].value == "customer_id"
    assert wb["customers"].max_row == 2
    assert wb["send_records"].max_row == 1


def test_export_csv_tables(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    customer_id = add_customer(store)
    idempotency.record_sent(store, SendKey(customer_id, "winback_step_1", 1), "a@example.com")

    paths = exports.export_csv_tables(store, tmp_path / "csv")

    assert [p.name for p in paths] == [f"{t}.csv" for t in exports.TABLES]
    lines = (tmp_path / "csv" / "send_records.csv").read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("customer_id,template_key,step,related_entity_id")
    assert len(lines) == 2
