from __future__ import annotations

import re
from datetime import date

from ..models import LineItem, OcrGuess
from ..normalizer import parse_amount


_INVOICE_NO = re.compile(r"\b(INV[-\s]?\d{4}[-\s]?\d{2,6})\b", re.IGNORECASE)
_INVOICE_LABEL = re.compile(
    r"\binvoice[ \t]*(?:no\.?|number|num|#)?[ \t]*[:#]?[ \t]*([A-Z0-9][A-Z0-9/-]{2,})", re.IGNORECASE
)
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_DMY_DATE = re.compile(r"\b(\d{1,2})[./](\d{1,2})[./](\d{4})\b")
_MONEY = re.compile(r"(?:KES|KSH|Ksh\.?)?\s*(?P<amount>\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)\s*$", re.IGNORECASE)
_TOTAL_LINE = re.compile(r"\b(grand\s+total|total\s+amount|amount\s+due|total)\b", re.IGNORECASE)
_PROVIDER_LABEL = re.compile(r"^(?:facility|hospital|provider|clinic)\s*[:\-]\s*(?P<name>.+)$", re.IGNORECASE)

_HEADER_MARKERS = (
    "invoice",
    "date",
    "facility",
    "hospital",
    "provider",
    "clinic",
    "payment point",
    "patient",
    "page",
    "description",
    "qty",
    "balance",
    "paid",
    "tax",
    "vat",
)


def parse_invoice_text(text: str) -> OcrGuess:
    """Turn raw OCR text of one invoice page into a structured guess."""
    lines = [ln.strip() for ln in text.splitlines()]
    lines = [ln for ln in lines if ln]

    items: list[LineItem] = []
    total: float | None = None
    for ln in lines:
        if _TOTAL_LINE.search(ln):
            amount = _line_amount(ln)
            if amount is not None:
                total = amount
            continue
        if _is_header_line(ln):
            continue
        item = _parse_item_line(ln)
        if item is not None:
            items.append(item)

    return OcrGuess(
        invoice_number=_find_invoice_number(text),
        amount=total,
        date=_find_date(text),
        provider=_find_provider(lines),
        items=items,
        raw_text=text,
    )


def _find_invoice_number(text: str) -> str | None:
    m = _INVOICE_NO.search(text)
    if m:
        return re.sub(r"\s+", "-", m.group(1).upper())
    for m in _INVOICE_LABEL.finditer(text):
        if any(ch.isdigit() for ch in m.group(1)):
            return m.group(1).upper()
    return None


def _find_date(text: str) -> str | None:
    m = _ISO_DATE.search(text)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    m = _DMY_DATE.search(text)
    if m:
        day, month, year = map(int, m.groups())
        return _safe_date(year, month, day)
    return None


def _safe_date(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _find_provider(lines: list[str]) -> str | None:
    for ln in lines:
        m = _PROVIDER_LABEL.match(ln)
        if m:
            return m.group("name").strip()[:80]
    for ln in lines:
        if not _INVOICE_NO.search(ln) and not _MONEY.search(ln) and not _is_header_line(ln):
            return ln[:80]
    return None


def _is_header_line(line: str) -> bool:
    lower = line.casefold()
    return any(lower.startswith(marker) for marker in _HEADER_MARKERS)


def _parse_item_line(line: str) -> LineItem | None:
    if _INVOICE_NO.search(line):
        return None
    m = _MONEY.search(line)
    if not m or m.start() == 0:
        return None
    description = line[: m.start()].strip(" .:-\t")
    if not description or not any(ch.isalpha() for ch in description):
        return None
    return LineItem(description=description, amount=parse_amount(m.group("amount")))


def _line_amount(line: str) -> float | None:
    m = _MONEY.search(line)
    if not m:
        return None
    return parse_amount(m.group("amount"))
