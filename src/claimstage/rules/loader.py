from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

import yaml


COLUMN_FIELDS: tuple[str, ...] = (
    "invoice_col",
    "amount_col",
    "items_col",
    "facility_col",
    "payment_point_col",
    "date_col",
)


@dataclass(frozen=True, slots=True)
class ColumnRules:
    invoice_col: tuple[str, ...]
    amount_col: tuple[str, ...]
    items_col: tuple[str, ...]
    facility_col: tuple[str, ...]
    payment_point_col: tuple[str, ...]
    date_col: tuple[str, ...]

    def synonyms_for(self, field: str) -> tuple[str, ...]:
        if field not in COLUMN_FIELDS:
            raise KeyError(field)
        return getattr(self, field)

    @classmethod
    def load_from_file(cls, path: Path, *, base: "ColumnRules | None" = None) -> "ColumnRules":
        data = _load_yaml(path)
        rules = base or DEFAULT_COLUMN_RULES
        if not data:
            return rules

        overrides: dict[str, tuple[str, ...]] = {}
        for key, values in data.items():
            field = _field_name(str(key))
            if field is None:
                continue
            if not isinstance(values, list):
                raise ValueError(f"Expected a list of synonyms for {key!r} in {path}.")
            overrides[field] = tuple(str(v) for v in values if v is not None and str(v).strip())
        return replace(rules, **overrides)


DEFAULT_COLUMN_RULES = ColumnRules(
    invoice_col=(
        "invoice",
        "invoice number",
        "invoice no",
        "invoice_number",
        "inv no",
        "inv_no",
        "inv #",
        "reference",
        "ref",
        "invoice_no",
    ),
    amount_col=(
        "amount",
        "total",
        "total amount",
        "grand total",
        "net amount",
        "value",
        "cost",
        "price",
        "sum",
        "claim_amount",
        "claimed_amount",
    ),
    items_col=(
        "items",
        "description",
        "services",
        "line items",
        "details",
        "treatment",
        "procedure",
        "service description",
        "item_description",
    ),
    facility_col=("facility", "hospital", "clinic", "branch", "site", "location", "facility name"),
    payment_point_col=(
        "payment point",
        "payment_point",
        "department",
        "service point",
        "point",
        "section",
        "unit",
    ),
    date_col=("date", "invoice date", "service date", "claim date", "date_of_service", "visit_date"),
)


def _field_name(key: str) -> str | None:
    # YAML files may use either "invoice" or "invoice_col"
    candidate = key.strip().lower().replace("-", "_").replace(" ", "_")
    if candidate in COLUMN_FIELDS:
        return candidate
    if f"{candidate}_col" in COLUMN_FIELDS:
        return f"{candidate}_col"
    return None


def _load_yaml(path: Path) -> dict | None:
    if not path.exists():
        raise FileNotFoundError(str(path))
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping at {path}, got {type(data).__name__}.")
    return data
