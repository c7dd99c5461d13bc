import io
from datetime import datetime

import pytest
from openpyxl import Workbook

from claimstage.spreadsheet import SpreadsheetParseError, parse_csv, parse_spreadsheet


def test_parse_csv_strips_bom_skips_blank_rows_and_dedupes_headers() -> None:
    content = b"\xef\xbb\xbfInvoice,Amount,,Amount\nINV-2026-001,2700\n\n,,,\nINV-2026-002,3600,x,y\n"

    table = parse_spreadsheet(content, "claims.csv")

    assert table.headers == ["Invoice", "Amount", "__EMPTY", "Amount_1"]
    assert table.rows[0] == {"Invoice": "INV-2026-001", "Amount": "2700", "__EMPTY": "", "Amount_1": ""}
    assert table.rows[1]["Amount_1"] == "y"
    assert len(table.rows) == 2


def test_parse_csv_falls_back_to_latin1() -> None:
    table = parse_csv("Facility\nJumuia Masii caf\xe9\n".encode("latin-1"))

    assert table.rows == [{"Facility": "Jumuia Masii caf\xe9"}]


def test_parse_csv_by_content_type() -> None:
    table = parse_spreadsheet(b"Invoice\nINV-2026-009\n", "upload", "text/csv; charset=utf-8")

    assert table.rows == [{"Invoice": "INV-2026-009"}]


def test_parse_xlsx_first_sheet() -> None:
    wb = Workbook()
    ws = wb.active
    ws.append(["Invoice No", "Total", "Service Date"])
    ws.append(["INV-2026-002", 3600.0, datetime(2026, 2, 20)])
    ws.append([None, None, None])
    buf = io.BytesIO()
    wb.save(buf)

    table = parse_spreadsheet(buf.getvalue(), "claims.xlsx")

    assert table.headers == ["Invoice No", "Total", "Service Date"]
    assert table.rows == [{"Invoice No": "INV-2026-002", "Total": "3600", "Service Date": "2026-02-20"}]


def test_unreadable_files_raise_parse_error() -> None:
    with pytest.raises(SpreadsheetParseError):
        parse_spreadsheet(b"definitely not a zip", "claims.xlsx")

    with pytest.raises(SpreadsheetParseError):
        parse_spreadsheet(b"%PDF-1.7", "claims.pdf", "application/pdf")
