from __future__ import annotations

from collections.abc import Sequence

from ..models import ColumnMapping
from .loader import COLUMN_FIELDS, DEFAULT_COLUMN_RULES, ColumnRules
from .normalization import normalize_header


def auto_detect(headers: Sequence[str], rules: ColumnRules = DEFAULT_COLUMN_RULES) -> ColumnMapping:
    """Guess which spreadsheet column holds each claim field.

    Exact matches on the normalized header win over substring matches. Within a
    pass, synonym order decides first and header order second.
    """
    normalized = [normalize_header(h) for h in headers]
    found = {field: find_column(headers, normalized, rules.synonyms_for(field)) for field in COLUMN_FIELDS}
    return ColumnMapping(**found)


def find_column(headers: Sequence[str], normalized: Sequence[str], synonyms: Sequence[str]) -> str | None:
    terms = [t for t in (normalize_header(s) for s in synonyms) if t]

    for term in terms:
        for header, norm in zip(headers, normalized):
            if norm == term:
                return header

    for term in terms:
        for header, norm in zip(headers, normalized):
            if term in norm:
                return header

    return None
