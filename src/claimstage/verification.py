from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping, Sequence

from .catalog import KNOWN_INVOICE_MAP, CatalogEntry
from .models import ClaimDraft, LineItem, VerifyResult
from .normalizer import parse_amount
from .rules.normalization import normalize_invoice_number


AMOUNT_TOLERANCE = 0.01


def format_kes(value: float) -> str:
    return f"KES {value:,.2f}"


def verify(
    invoice_number: str | None,
    amount: object,
    items: Sequence[LineItem | Mapping] | None,
    *,
    catalog: Mapping[str, CatalogEntry] = KNOWN_INVOICE_MAP,
    claimed: Collection[str] = frozenset(),
) -> VerifyResult:
    """Check one claim against the catalog and the already-claimed invoices.

    Precedence is unknown, duplicate, missing_items, amount_mismatch, valid.
    Nothing is mutated here; only a successful submission grows ``claimed``.
    """
    key = normalize_invoice_number(invoice_number)
    label = (invoice_number or "").strip() or "(blank)"

    known = catalog.get(key) if key else None
    if known is None:
        return VerifyResult(status="unknown", message=f"Invoice {label} not found in the invoice catalog.")

    if key in claimed:
        return VerifyResult(status="duplicate", message=f"Invoice {label} has already been submitted.")

    if not items:
        return VerifyResult(
            status="missing_items",
            message=f"Invoice {label} requires at least one line item.",
            expected_amount=known.amount,
        )

    submitted = parse_amount(amount)
    if abs(submitted - known.amount) >= AMOUNT_TOLERANCE:
        return VerifyResult(
            status="amount_mismatch",
            message=(
                f"Amount mismatch: submitted {format_kes(submitted)}, expected {format_kes(known.amount)}."
            ),
            expected_amount=known.amount,
        )

    return VerifyResult(
        status="valid",
        message=f"Invoice {label} verified successfully.",
        expected_amount=known.amount,
    )


def verify_draft(
    draft: ClaimDraft,
    *,
    catalog: Mapping[str, CatalogEntry] = KNOWN_INVOICE_MAP,
    claimed: Collection[str] = frozenset(),
) -> VerifyResult:
    return verify(draft.invoice_number, draft.amount, draft.items, catalog=catalog, claimed=claimed)


def batch_verify(
    drafts: Iterable[ClaimDraft],
    *,
    catalog: Mapping[str, CatalogEntry] = KNOWN_INVOICE_MAP,
    claimed: Collection[str] = frozenset(),
) -> list[VerifyResult]:
    # Each row is checked against the same snapshot; rows never see each other.
    snapshot = frozenset(claimed)
    return [verify_draft(d, catalog=catalog, claimed=snapshot) for d in drafts]
