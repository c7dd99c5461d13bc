import asyncio

import pytest

from claimstage.mock_api import ClaimsApi, Latency
from claimstage.models import ClaimDraft, LineItem, SubmitResult
from claimstage.normalizer import manual_draft
from claimstage.staging import SessionBusyError, StagingError, StagingSession, rescale_items, submit_draft
from claimstage.storage import MemoryKeyValueStore
from claimstage.store import CLAIMS_KEY, ClaimStore, ClaimStoreCorruptError


def _store() -> ClaimStore:
    store = ClaimStore(MemoryKeyValueStore())
    store.initialize()
    return store


def _session(*drafts: ClaimDraft) -> StagingSession:
    store = _store()
    api = ClaimsApi(store.claimed, latency=Latency.none())
    return StagingSession(api, store, drafts)


def _first_invoice(amount_items: str = "Consultation fee:1800|Follow-up visit:900") -> ClaimDraft:
    return manual_draft(invoice_number="INV-2026-001", items=amount_items, facility="Jumuia Huruma")


def test_verify_all_sets_statuses() -> None:
    session = _session(
        _first_invoice(),
        manual_draft(invoice_number="INV-2026-999", items="Anything:10"),
        manual_draft(invoice_number="INV-2026-002", amount=3600),
        _first_invoice("Consultation fee:1800"),
    )

    applied = asyncio.run(session.verify_all())

    assert applied == 4
    assert [r.status for r in session.rows] == ["valid", "unknown", "missing_items", "amount_mismatch"]
    assert session.counts_by_status()["valid"] == 1
    assert not session.is_verifying


def test_select_invalid_skips_valid_and_pending() -> None:
    session = _session(_first_invoice(), manual_draft(invoice_number="NOPE", amount=1))
    asyncio.run(session.verify_all())
    session.add_manual_row(invoice_number="INV-2026-003", amount=1)

    ids = session.select_invalid()

    assert ids == [session.rows[1].id]


def test_item_edit_resets_valid_draft_to_pending() -> None:
    session = _session(_first_invoice())
    asyncio.run(session.verify_all())
    draft = session.rows[0]
    assert draft.status == "valid"

    edited = session.update_item(draft.id, draft.items[1].id, {"amount": 1000})

    assert edited.status == "pending"
    assert edited.verify_result is None
    assert edited.amount == 2800


def test_add_and_remove_item_recompute_amount() -> None:
    session = _session(_first_invoice("Consultation fee:1800"))
    draft_id = session.rows[0].id

    added = session.add_item(draft_id, "Follow-up visit", "900")
    assert added.amount == 2700

    removed = session.remove_item(draft_id, added.items[0].id)
    assert removed.amount == 900
    assert [i.description for i in removed.items] == ["Follow-up visit"]

    emptied = session.remove_item(draft_id, removed.items[0].id)
    assert emptied.amount == 0


def test_rescale_to_expected_sums_exactly() -> None:
    session = _session(_first_invoice("Consultation fee:1000|Follow-up visit:500|Specialist referral:500"))
    asyncio.run(session.verify_all())
    draft = session.rows[0]
    assert draft.status == "amount_mismatch"

    rescaled = session.rescale_to_expected(draft.id)

    assert rescaled.amount == 2700
    assert round(sum(i.amount for i in rescaled.items), 2) == 2700
    assert rescaled.status == "pending"

    asyncio.run(session.verify_all())
    assert session.rows[0].status == "valid"


def test_rescale_items_puts_remainder_on_largest_item() -> None:
    items = [LineItem(description=d, amount=1) for d in ("a", "b", "c")]

    scaled = rescale_items(items, 100)

    assert [i.amount for i in scaled] == [33.34, 33.33, 33.33]
    assert round(sum(i.amount for i in scaled), 2) == 100


def test_rescale_requires_amount_mismatch() -> None:
    session = _session(_first_invoice())

    with pytest.raises(StagingError):
        session.rescale_to_expected(session.rows[0].id)


def test_verify_skips_rows_edited_or_deleted_while_in_flight() -> None:
    store = _store()
    api = ClaimsApi(store.claimed, latency=Latency(verify_s=0.01, submit_s=0.0, jitter_s=0.0))
    session = StagingSession(
        api, store, [_first_invoice(), _first_invoice(), manual_draft(invoice_number="INV-2026-002", amount=1)]
    )
    edited_id, deleted_id, kept_id = (r.id for r in session.rows)

    async def scenario() -> int:
        task = asyncio.create_task(session.verify_all())
        await asyncio.sleep(0)
        session.update_row(edited_id, {"invoiceNumber": "INV-2026-004"})
        session.delete_row(deleted_id)
        return await task

    applied = asyncio.run(scenario())

    assert applied == 1
    assert session.get(edited_id).status == "pending"
    assert session.get(kept_id).status == "missing_items"
    assert len(session) == 2


def test_verify_rejects_reentry_while_busy() -> None:
    store = _store()
    api = ClaimsApi(store.claimed, latency=Latency(verify_s=0.01, submit_s=0.0, jitter_s=0.0))
    session = StagingSession(api, store, [_first_invoice()])

    async def scenario() -> None:
        task = asyncio.create_task(session.verify_all())
        await asyncio.sleep(0)
        assert session.is_verifying
        with pytest.raises(SessionBusyError):
            await session.verify_all()
        with pytest.raises(SessionBusyError):
            await session.submit_valid()
        await task

    asyncio.run(scenario())
    assert not session.is_busy


def test_submit_valid_only_submits_valid_drafts() -> None:
    session = _session(
        _first_invoice(),
        _first_invoice("Consultation fee:1800"),
        manual_draft(invoice_number="INV-2026-002", items="Blood panel (FBC):1200|Urinalysis:600|Lipid profile:1800"),
    )
    asyncio.run(session.verify_all())
    first, mismatch, second = session.rows

    claims = asyncio.run(session.submit_valid([first.id, mismatch.id]))

    assert [c.invoice_number for c in claims] == ["INV-2026-001"]
    assert claims[0].status == "processing"
    assert claims[0].claim_id.startswith("CLM-")
    assert [r.id for r in session.rows] == [mismatch.id, second.id]
    assert "INV-2026-001" in session.claim_store.claimed
    assert "INV-2026-002" not in session.claim_store.claimed
    assert session.claim_store.get_claims()[-1].invoice_number == "INV-2026-001"

    # a second verify now flags the same invoice as a duplicate
    session.add_rows([_first_invoice()])
    asyncio.run(session.verify_all())
    assert session.rows[-1].status == "duplicate"


class _FlakyApi(ClaimsApi):
    async def submit_claim(self, draft: ClaimDraft) -> SubmitResult:
        if draft.invoice_number == "INV-2026-002":
            raise RuntimeError("gateway timeout")
        return await super().submit_claim(draft)


def test_failed_submission_stays_staged() -> None:
    store = _store()
    api = _FlakyApi(store.claimed, latency=Latency.none())
    session = StagingSession(
        api,
        store,
        [
            _first_invoice(),
            manual_draft(invoice_number="INV-2026-002", items="Blood panel (FBC):1200|Urinalysis:600|Lipid profile:1800"),
        ],
    )
    asyncio.run(session.verify_all())

    claims = asyncio.run(session.submit_valid())

    assert [c.invoice_number for c in claims] == ["INV-2026-001"]
    assert [r.invoice_number for r in session.rows] == ["INV-2026-002"]
    assert session.rows[0].status == "valid"
    assert "INV-2026-002" not in store.claimed


def test_delete_many_never_touches_claimed_set() -> None:
    session = _session(_first_invoice(), _first_invoice())
    session.select([r.id for r in session.rows] + ["ghost"])

    assert session.delete_selected() == 2
    assert len(session) == 0
    assert len(session.claim_store.claimed) == 0


def test_submit_draft_resubmits_rejected_claim() -> None:
    store = _store()
    api = ClaimsApi(store.claimed, latency=Latency.none())
    rejected = store.get_claim("claim-seed-6")
    draft = manual_draft(
        invoice_number=rejected.invoice_number,
        items=[item.model_dump() for item in rejected.items],
        facility=rejected.facility,
    )
    result = asyncio.run(api.verify_invoice(draft.invoice_number, draft.amount, draft.items))
    draft = draft.model_copy(update={"status": result.status, "verify_result": result})
    assert draft.status == "valid"

    claim = asyncio.run(submit_draft(api, store, draft, existing_claim_id=rejected.id))

    assert claim.id == rejected.id
    assert claim.status == "processing"
    assert claim.rejection_reason is None
    assert claim.claim_id.startswith("CLM-")
    assert len(store.get_claims()) == 100


def test_submit_draft_refuses_unverified_or_settled_claims() -> None:
    store = _store()
    api = ClaimsApi(store.claimed, latency=Latency.none())

    with pytest.raises(StagingError):
        asyncio.run(submit_draft(api, store, _first_invoice()))

    valid = _first_invoice().model_copy(update={"status": "valid"})
    with pytest.raises(StagingError):
        asyncio.run(submit_draft(api, store, valid, existing_claim_id="claim-seed-0"))
    assert len(store.claimed) == 0


def test_rows_cannot_be_edited_while_submitting() -> None:
    store = _store()
    api = ClaimsApi(store.claimed, latency=Latency(verify_s=0.0, submit_s=0.01, jitter_s=0.0))
    session = StagingSession(api, store, [_first_invoice()])
    asyncio.run(session.verify_all())
    draft = session.rows[0]

    async def scenario() -> list:
        task = asyncio.create_task(session.submit_valid())
        await asyncio.sleep(0)
        assert session.is_submitting
        with pytest.raises(SessionBusyError):
            session.update_row(draft.id, {"facility": "Jumuia Masii"})
        with pytest.raises(SessionBusyError):
            session.add_item(draft.id, "Follow-up visit", 900)
        return await task

    claims = asyncio.run(scenario())

    assert [c.facility for c in claims] == ["Jumuia Huruma"]
    assert len(session) == 0
    session.add_manual_row(invoice_number="INV-2026-003", amount=1)
    assert session.update_row(session.rows[0].id, {"facility": "Jumuia Masii"}).facility == "Jumuia Masii"


def test_submit_refuses_when_claim_list_is_unreadable() -> None:
    session = _session(_first_invoice())
    asyncio.run(session.verify_all())
    session.claim_store.kv.set(CLAIMS_KEY, "[{")

    with pytest.raises(ClaimStoreCorruptError):
        asyncio.run(session.submit_valid())

    assert len(session.claim_store.claimed) == 0
    assert session.rows[0].status == "valid"
    assert not session.is_submitting
