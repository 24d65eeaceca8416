from __future__ import annotations

import csv
import sqlite3
from pathlib import Path

from openpyxl import Workbook

from drip.store.sqlite import SqliteStore

# Table name -> export ordering.
TABLE_ORDER = {
    "customers": "created_at, customer_id",
    "orders": "created_at, order_id",
    "events": "occurred_at, event_id",
    "send_records": "sent_at, customer_id, template_key, step",
}
TABLES = list(TABLE_ORDER)


def export_excel(store: SqliteStore, out_path: Path) -> None:
    """Write one sheet per table; empty tables get an empty sheet."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)
    for table in TABLES:
        sheet = wb.create_sheet(title=table)
        headers, rows = _table_rows(store, table)
        if not rows:
            continue
        sheet.append(headers)
        for row in rows:
            sheet.append(list(row))
        sheet.freeze_panes = "A2"
    wb.save(out_path)


def export_csv_tables(store: SqliteStore, out_dir: Path) -> list[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for table in TABLES:
        headers, rows = _table_rows(store, table)
        csv_path = out_dir / f"{table}.csv"
        with csv_path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(headers)
            writer.writerows(list(row) for row in rows)
        written.append(csv_path)
    return written


def _table_rows(store: SqliteStore, table: str) -> tuple[list[str], list[sqlite3.Row]]:
    rows = store.fetch_all(f"SELECT * FROM {table} ORDER BY {TABLE_ORDER[table]}")
    headers = list(rows[0].keys()) if rows else []
    return headers, rows
