from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from decimal import Decimal

from .models import (
    EDITABLE_FIELDS,
    PROTECTED_FIELDS,
    ClaimDraft,
    ColumnMapping,
    LineItem,
    OcrGuess,
)


_NON_NUMERIC = re.compile(r"[^0-9.]")
_NUMBER_PREFIX = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_ITEM_SEPARATORS = re.compile(r"[|;]")
_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")

ITEM_JOINER = "|"


def parse_amount(value: object) -> float:
    """Best-effort decimal parse; malformed input yields 0.0 instead of raising."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if value == value and value >= 0 else 0.0
    cleaned = _NON_NUMERIC.sub("", str(value))
    m = _NUMBER_PREFIX.match(cleaned)
    if not m:
        return 0.0
    try:
        return float(m.group(0))
    except ValueError:
        return 0.0


def parse_items_cell(raw: object) -> list[LineItem]:
    if raw is None:
        return []
    text = str(raw)
    if not text.strip():
        return []

    items: list[LineItem] = []
    for segment in _ITEM_SEPARATORS.split(text):
        trimmed = segment.strip()
        if not trimmed:
            continue
        colon = trimmed.rfind(":")
        if colon >= 0:
            items.append(
                LineItem(description=trimmed[:colon].strip(), amount=parse_amount(trimmed[colon + 1 :]))
            )
        else:
            items.append(LineItem(description=trimmed, amount=0.0))
    return items


def format_amount(value: float) -> str:
    number = Decimal(repr(float(value)))
    if number == number.to_integral_value():
        return str(int(number))
    return format(number, "f")


def serialize_items(items: Iterable[LineItem | Mapping]) -> str:
    parts = []
    for item in coerce_items(list(items)):
        parts.append(f"{item.description}:{format_amount(item.amount)}")
    return ITEM_JOINER.join(parts)


def items_total(items: Iterable[LineItem]) -> float:
    return round(sum(item.amount for item in items), 2)


def derive_amount(items: list[LineItem], fallback: object) -> float:
    total = items_total(items)
    if total > 0:
        return total
    return parse_amount(fallback)


def coerce_items(value: object) -> list[LineItem]:
    if value is None:
        return []
    if isinstance(value, str):
        return parse_items_cell(value)
    if isinstance(value, Mapping) or not isinstance(value, Iterable):
        raise ValueError(f"Items must be a list or an item-cell string, got {type(value).__name__}.")
    items: list[LineItem] = []
    for item in value:
        if isinstance(item, LineItem):
            items.append(item)
        elif isinstance(item, Mapping):
            data = dict(item)
            data["amount"] = parse_amount(data.get("amount"))
            items.append(LineItem.model_validate(data))
        else:
            items.extend(parse_items_cell(item))
    return items


def apply_mapping(rows: Iterable[Mapping[str, object]], mapping: ColumnMapping) -> list[ClaimDraft]:
    drafts: list[ClaimDraft] = []
    for row in rows:
        items = parse_items_cell(row.get(mapping.items_col)) if mapping.items_col else []
        amount_cell = row.get(mapping.amount_col) if mapping.amount_col else None
        drafts.append(
            ClaimDraft(
                invoice_number=_cell(row, mapping.invoice_col).strip(),
                amount=derive_amount(items, amount_cell),
                items=items,
                facility=_cell(row, mapping.facility_col),
                payment_point=_cell(row, mapping.payment_point_col),
                date=_cell(row, mapping.date_col),
                status="pending",
                verify_result=None,
                raw_row={str(k): "" if v is None else str(v) for k, v in row.items()},
                source="spreadsheet",
            )
        )
    return drafts


def draft_from_guess(guess: OcrGuess, *, fallback_invoice_number: str = "") -> ClaimDraft:
    items = coerce_items(guess.items)
    return ClaimDraft(
        invoice_number=(guess.invoice_number or fallback_invoice_number).strip(),
        amount=derive_amount(items, guess.amount),
        items=items,
        facility=guess.provider or "",
        date=guess.date or "",
        source="ocr",
    )


def manual_draft(
    *,
    invoice_number: str = "",
    amount: object = 0,
    items: object = None,
    facility: str = "",
    payment_point: str = "",
    date: str = "",
) -> ClaimDraft:
    parsed = coerce_items(items)
    return ClaimDraft(
        invoice_number=invoice_number.strip(),
        amount=derive_amount(parsed, amount),
        items=parsed,
        facility=facility,
        payment_point=payment_point,
        date=date,
        source="manual",
    )


def apply_edit(draft: ClaimDraft, patch: Mapping[str, object]) -> ClaimDraft:
    """Return a copy of ``draft`` with ``patch`` merged in.

    Items always win over a bare amount when they carry a positive total, and a
    change to invoice number, amount or items drops the previous verification.
    """
    updates = {_snake(key): value for key, value in patch.items()}
    unknown = sorted(set(updates) - EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(unknown)}")

    if "amount" in updates:
        updates["amount"] = parse_amount(updates["amount"])
    if "items" in updates:
        updates["items"] = coerce_items(updates["items"])
    for key in ("invoice_number", "facility", "payment_point", "date"):
        if key in updates:
            updates[key] = "" if updates[key] is None else str(updates[key])

    items = updates.get("items", draft.items)
    if "items" in updates or "amount" in updates:
        updates["amount"] = derive_amount(items, updates.get("amount", draft.amount))

    if PROTECTED_FIELDS & set(updates):
        updates["status"] = "pending"
        updates["verify_result"] = None

    return draft.model_copy(update=updates)


def _cell(row: Mapping[str, object], column: str | None) -> str:
    if not column:
        return ""
    value = row.get(column)
    return "" if value is None else str(value)


def _snake(key: str) -> str:
    return _CAMEL.sub("_", key).lower()
