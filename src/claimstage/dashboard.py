from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from .models import CamelModel, Claim, ClaimStatus


SortField = Literal["invoice_number", "facility", "payment_point", "date", "amount", "status", "submitted_at"]

STATUS_LABELS: dict[str, str] = {
    "disbursed": "Disbursed",
    "processing": "Processing",
    "rejected": "Rejected",
    "unsubmitted": "Unsubmitted",
}


class ClaimQuery(BaseModel):
    search: str = ""
    status: ClaimStatus | None = None
    facility: str | None = None
    payment_point: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    sort: SortField = "date"
    direction: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=500)


class ClaimPage(CamelModel):
    items: list[Claim]
    total: int
    page: int
    pages: int


class ClaimStats(CamelModel):
    total: int
    disbursed: int
    processing: int
    rejected: int
    unsubmitted: int
    total_value: float


def filter_claims(claims: Iterable[Claim], query: ClaimQuery) -> list[Claim]:
    result = list(claims)

    needle = query.search.strip().casefold()
    if needle:
        result = [c for c in result if _matches_search(c, needle)]
    if query.status:
        result = [c for c in result if c.status == query.status]
    if query.facility:
        result = [c for c in result if c.facility == query.facility]
    if query.payment_point:
        result = [c for c in result if c.payment_point == query.payment_point]
    if query.date_from:
        result = [c for c in result if _on_or_after(c, query.date_from)]
    if query.date_to:
        result = [c for c in result if _on_or_before(c, query.date_to)]
    return result


def sort_claims(claims: list[Claim], field: str, direction: str = "asc") -> list[Claim]:
    if field == "amount":
        key = lambda c: float(c.amount or 0)  # noqa: E731
    else:
        key = lambda c: str(getattr(c, field) or "").casefold()  # noqa: E731
    return sorted(claims, key=key, reverse=direction == "desc")


def query_claims(claims: Iterable[Claim], query: ClaimQuery) -> ClaimPage:
    ordered = sort_claims(filter_claims(claims, query), query.sort, query.direction)
    start = (query.page - 1) * query.page_size
    return ClaimPage(
        items=ordered[start : start + query.page_size],
        total=len(ordered),
        page=query.page,
        pages=math.ceil(len(ordered) / query.page_size),
    )


def claim_stats(claims: Iterable[Claim]) -> ClaimStats:
    claims = list(claims)
    counts = {status: 0 for status in STATUS_LABELS}
    for claim in claims:
        counts[claim.status] = counts.get(claim.status, 0) + 1
    return ClaimStats(
        total=len(claims),
        total_value=round(sum(c.amount for c in claims), 2),
        **counts,
    )


def remittance_summary(claim: Claim) -> str:
    lines = [
        "JUMUIA HOSPITALS - CLAIMS REMITTANCE SUMMARY",
        "=" * 45,
        f"Claim ID:       {claim.claim_id or 'N/A'}",
        f"Invoice No:     {claim.invoice_number}",
        f"Facility:       {claim.facility or 'N/A'}",
        f"Payment Point:  {claim.payment_point or 'N/A'}",
        f"Date:           {claim.date or 'N/A'}",
        f"Submitted:      {claim.submitted_at or 'N/A'}",
        f"Status:         {STATUS_LABELS.get(claim.status, claim.status)}",
        "",
        "LINE ITEMS",
        "-" * 10,
    ]
    for idx, item in enumerate(claim.items, start=1):
        lines.append(f"{idx:>2}. {item.description:<40} KES {item.amount:,.2f}")
    lines += ["", f"TOTAL AMOUNT:   KES {claim.amount:,.2f}"]
    if claim.rejection_reason:
        lines += ["", f"REJECTION REASON: {claim.rejection_reason}"]
    return "\n".join(lines) + "\n"


def _matches_search(claim: Claim, needle: str) -> bool:
    fields = (claim.invoice_number, claim.facility, claim.payment_point, claim.claim_id)
    return any(needle in (value or "").casefold() for value in fields)


def _claim_date(claim: Claim) -> date | None:
    try:
        return date.fromisoformat(claim.date[:10])
    except (TypeError, ValueError):
        return None


def _on_or_after(claim: Claim, bound: date) -> bool:
    d = _claim_date(claim)
    return d is None or d >= bound


def _on_or_before(claim: Claim, bound: date) -> bool:
    d = _claim_date(claim)
    return d is None or d <= bound
