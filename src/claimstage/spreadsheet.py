from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time

from openpyxl import load_workbook

from .models import SpreadsheetTable


CSV_CONTENT_TYPES = frozenset({"text/csv", "application/csv", "text/plain"})
XLSX_SUFFIXES = (".xlsx", ".xlsm")


class SpreadsheetParseError(ValueError):
    pass


def parse_spreadsheet(content: bytes, filename: str | None = None, content_type: str | None = None) -> SpreadsheetTable:
    name = (filename or "").lower()
    if name.endswith(".csv") or (content_type or "").split(";")[0].strip() in CSV_CONTENT_TYPES:
        return parse_csv(content)
    if name.endswith(XLSX_SUFFIXES) or not name:
        return parse_xlsx(content)
    raise SpreadsheetParseError(f"Unsupported spreadsheet type: {filename}")


def parse_csv(content: bytes) -> SpreadsheetTable:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")

    try:
        records = list(csv.reader(io.StringIO(text, newline="")))
    except csv.Error as exc:
        raise SpreadsheetParseError(f"Could not read CSV: {exc}") from exc

    return _table_from_records(records)


def parse_xlsx(content: bytes) -> SpreadsheetTable:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise SpreadsheetParseError(f"Could not read workbook: {exc}") from exc

    try:
        if not workbook.sheetnames:
            return SpreadsheetTable()
        sheet = workbook[workbook.sheetnames[0]]
        records = [[_cell_text(v) for v in row] for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()

    return _table_from_records(records)


def _table_from_records(records: Iterable[Sequence[str]]) -> SpreadsheetTable:
    records = [list(r) for r in records if any(str(c).strip() for c in r)]
    if not records:
        return SpreadsheetTable()

    headers = _unique_headers(records[0])
    rows: list[dict[str, str]] = []
    for record in records[1:]:
        padded = list(record) + [""] * (len(headers) - len(record))
        rows.append({header: str(padded[i]) for i, header in enumerate(headers)})
    return SpreadsheetTable(headers=headers, rows=rows)


def _unique_headers(raw: Sequence[str]) -> list[str]:
    headers: list[str] = []
    seen: dict[str, int] = {}
    empty = 0
    for value in raw:
        header = str(value).strip()
        if not header:
            header = "__EMPTY" if empty == 0 else f"__EMPTY_{empty}"
            empty += 1
        if header in seen:
            seen[header] += 1
            header = f"{header}_{seen[header]}"
        seen.setdefault(header, 0)
        headers.append(header)
    return headers


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)
