from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone

import structlog

from .mock_api import ClaimsApi
from .models import INVALID_STATUSES, Claim, ClaimDraft, LineItem, new_id
from .normalizer import apply_edit, coerce_items, items_total, manual_draft
from .store import ClaimStore


logger = structlog.get_logger(__name__)

RESUBMITTABLE_STATUSES = frozenset({"rejected", "unsubmitted"})


class StagingError(ValueError):
    pass


class DraftNotFoundError(KeyError):
    pass


class SessionBusyError(RuntimeError):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _fingerprint(draft: ClaimDraft) -> tuple:
    return (
        draft.invoice_number,
        draft.amount,
        tuple((item.description, item.amount) for item in draft.items),
    )


def claim_from_draft(draft: ClaimDraft, claim_id: str, *, submitted_at: str | None = None) -> Claim:
    return Claim(
        id=f"claim-{new_id()}",
        invoice_number=draft.invoice_number,
        amount=draft.amount,
        items=list(draft.items),
        facility=draft.facility,
        payment_point=draft.payment_point,
        date=draft.date or date.today().isoformat(),
        submitted_at=submitted_at or _now_iso(),
        status="processing",
        claim_id=claim_id,
    )


def rescale_items(items: list[LineItem], expected: float) -> list[LineItem]:
    """Scale items proportionally so they sum to exactly ``expected``.

    Each amount is rounded to cents; the rounding remainder goes to the largest
    item so the total is exact.
    """
    current = items_total(items)
    if not items or current <= 0:
        return list(items)

    ratio = expected / current
    scaled = [item.model_copy(update={"amount": round(item.amount * ratio, 2)}) for item in items]
    remainder = round(expected - sum(item.amount for item in scaled), 2)
    if remainder:
        largest = max(range(len(scaled)), key=lambda i: scaled[i].amount)
        adjusted = round(scaled[largest].amount + remainder, 2)
        scaled[largest] = scaled[largest].model_copy(update={"amount": max(adjusted, 0.0)})
    return scaled


class StagingSession:
    def __init__(self, api: ClaimsApi, claim_store: ClaimStore, drafts: Iterable[ClaimDraft] = ()) -> None:
        self.id = new_id()
        self.api = api
        self.claim_store = claim_store
        self._rows: list[ClaimDraft] = list(drafts)
        self.selected: set[str] = set()
        self.is_verifying = False
        self.is_submitting = False

    @property
    def rows(self) -> list[ClaimDraft]:
        return list(self._rows)

    @property
    def is_busy(self) -> bool:
        return self.is_verifying or self.is_submitting

    def __len__(self) -> int:
        return len(self._rows)

    def get(self, draft_id: str) -> ClaimDraft:
        return self._rows[self._index(draft_id)]

    def add_rows(self, drafts: Iterable[ClaimDraft]) -> list[ClaimDraft]:
        drafts = list(drafts)
        self._rows.extend(drafts)
        return drafts

    def add_manual_row(self, **fields: object) -> ClaimDraft:
        draft = manual_draft(**fields)  # type: ignore[arg-type]
        self._rows.append(draft)
        return draft

    # -- edits ---------------------------------------------------------------

    def update_row(self, draft_id: str, patch: Mapping[str, object]) -> ClaimDraft:
        # Submitted drafts are removed by id once the batch finishes.
        if self.is_submitting:
            raise SessionBusyError("Cannot edit rows while a submission is running.")
        idx = self._index(draft_id)
        updated = apply_edit(self._rows[idx], patch)
        self._rows[idx] = updated
        return updated

    def add_item(self, draft_id: str, description: str = "", amount: object = 0) -> ClaimDraft:
        draft = self.get(draft_id)
        items = [*draft.items, *coerce_items([{"description": description, "amount": amount}])]
        return self._replace_items(draft_id, items)

    def update_item(self, draft_id: str, item_id: str, patch: Mapping[str, object]) -> ClaimDraft:
        draft = self.get(draft_id)
        items = []
        found = False
        for item in draft.items:
            if item.id == item_id:
                found = True
                item = coerce_items([{**item.model_dump(), **patch, "id": item.id}])[0]
            items.append(item)
        if not found:
            raise DraftNotFoundError(item_id)
        return self._replace_items(draft_id, items)

    def remove_item(self, draft_id: str, item_id: str) -> ClaimDraft:
        draft = self.get(draft_id)
        items = [item for item in draft.items if item.id != item_id]
        if len(items) == len(draft.items):
            raise DraftNotFoundError(item_id)
        return self._replace_items(draft_id, items)

    def rescale_to_expected(self, draft_id: str) -> ClaimDraft:
        draft = self.get(draft_id)
        expected = draft.verify_result.expected_amount if draft.verify_result else None
        if draft.status != "amount_mismatch" or expected is None:
            raise StagingError(f"Draft {draft_id} has no expected amount to scale to.")
        return self.update_row(draft_id, {"items": rescale_items(draft.items, expected), "amount": expected})

    def _replace_items(self, draft_id: str, items: list[LineItem]) -> ClaimDraft:
        # The item editor always recomputes the amount, even when it drops to zero.
        return self.update_row(draft_id, {"items": items, "amount": items_total(items)})

    # -- deletion and selection ---------------------------------------------

    def delete_row(self, draft_id: str) -> None:
        self._rows.pop(self._index(draft_id))
        self.selected.discard(draft_id)

    def delete_many(self, draft_ids: Iterable[str]) -> int:
        doomed = set(draft_ids)
        before = len(self._rows)
        self._rows = [row for row in self._rows if row.id not in doomed]
        self.selected -= doomed
        return before - len(self._rows)

    def delete_selected(self) -> int:
        return self.delete_many(list(self.selected))

    def select(self, draft_ids: Iterable[str]) -> set[str]:
        present = {row.id for row in self._rows}
        self.selected = {i for i in draft_ids if i in present}
        return set(self.selected)

    def clear_selection(self) -> None:
        self.selected = set()

    def select_invalid(self) -> list[str]:
        ids = [row.id for row in self._rows if row.status in INVALID_STATUSES]
        self.selected = set(ids)
        return ids

    # -- batch operations ----------------------------------------------------

    async def verify_all(self) -> int:
        self._claim_busy("verify")
        self.is_verifying = True
        try:
            snapshot = list(self._rows)
            results = await self.api.batch_verify(snapshot)
        finally:
            self.is_verifying = False

        applied = 0
        for draft, result in zip(snapshot, results):
            try:
                idx = self._index(draft.id)
            except DraftNotFoundError:
                continue
            current = self._rows[idx]
            if _fingerprint(current) != _fingerprint(draft):
                continue
            self._rows[idx] = current.model_copy(update={"status": result.status, "verify_result": result})
            applied += 1
        logger.info("staging_verified", session=self.id, rows=len(snapshot), applied=applied)
        return applied

    async def submit_valid(self, draft_ids: Iterable[str] | None = None) -> list[Claim]:
        self._claim_busy("submit")
        wanted = None if draft_ids is None else set(draft_ids)
        candidates = [
            row for row in self._rows if row.status == "valid" and (wanted is None or row.id in wanted)
        ]
        if not candidates:
            return []
        self.claim_store.check_writable()

        self.is_submitting = True
        try:
            results = await self.api.batch_submit(candidates)
        finally:
            self.is_submitting = False

        claims: list[Claim] = []
        submitted_ids: set[str] = set()
        for draft, result in zip(candidates, results):
            if isinstance(result, BaseException) or not result.success:
                logger.warning(
                    "submission_failed",
                    session=self.id,
                    draft=draft.id,
                    invoice_number=draft.invoice_number,
                    error=str(result) if isinstance(result, BaseException) else "rejected",
                )
                continue
            claims.append(claim_from_draft(draft, result.claim_id))
            submitted_ids.add(draft.id)

        if claims:
            self.claim_store.add_claims(claims)
        self.delete_many(submitted_ids)
        logger.info("staging_submitted", session=self.id, submitted=len(claims), failed=len(candidates) - len(claims))
        return claims

    # -- reporting -----------------------------------------------------------

    def valid_rows(self) -> list[ClaimDraft]:
        return [row for row in self._rows if row.status == "valid"]

    def counts_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for row in self._rows:
            counts[row.status] = counts.get(row.status, 0) + 1
        return counts

    def total_value(self) -> float:
        return round(sum(row.amount for row in self._rows), 2)

    def _index(self, draft_id: str) -> int:
        for idx, row in enumerate(self._rows):
            if row.id == draft_id:
                return idx
        raise DraftNotFoundError(draft_id)

    def _claim_busy(self, operation: str) -> None:
        if self.is_busy:
            raise SessionBusyError(f"Cannot {operation} while another batch operation is running.")


async def submit_draft(
    api: ClaimsApi,
    store: ClaimStore,
    draft: ClaimDraft,
    *,
    existing_claim_id: str | None = None,
) -> Claim:
    """Submit one verified draft, either as a new claim or as a resubmission."""
    if draft.status != "valid":
        raise StagingError(f"Only verified claims can be submitted (status is {draft.status}).")

    existing = store.get_claim(existing_claim_id) if existing_claim_id else None
    if existing is not None and existing.status not in RESUBMITTABLE_STATUSES:
        raise StagingError(f"Claim {existing.id} is {existing.status} and cannot be resubmitted.")

    store.check_writable()
    result = await api.submit_claim(draft)
    submitted_at = _now_iso()

    if existing is None:
        return store.add_claim(claim_from_draft(draft, result.claim_id, submitted_at=submitted_at))

    return store.update_claim(
        existing.id,
        {
            "status": "processing",
            "claim_id": result.claim_id,
            "submitted_at": submitted_at,
            "amount": draft.amount,
            "items": [item.model_dump() for item in draft.items],
            "facility": draft.facility,
            "payment_point": draft.payment_point,
            "date": draft.date or existing.date,
            "rejection_reason": None,
        },
    )
