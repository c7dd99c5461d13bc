from claimstage.catalog import KNOWN_INVOICE_MAP
from claimstage.models import ClaimDraft, LineItem
from claimstage.verification import batch_verify, verify


def _first_invoice_items() -> list[dict]:
    return [
        {"description": "Consultation fee", "amount": 1800},
        {"description": "Follow-up visit", "amount": 900},
    ]


def test_verify_valid_invoice() -> None:
    result = verify("INV-2026-001", 2700, _first_invoice_items())

    assert result.status == "valid"
    assert result.expected_amount == 2700


def test_verify_is_case_insensitive_on_invoice_number() -> None:
    assert verify(" inv-2026-001 ", 2700, _first_invoice_items()).status == "valid"


def test_verify_unknown_invoice() -> None:
    result = verify("INV-2026-999", 100, [{"description": "Anything", "amount": 100}])

    assert result.status == "unknown"
    assert result.expected_amount is None
    assert verify("", 100, []).status == "unknown"


def test_verify_duplicate_wins_over_missing_items_and_mismatch() -> None:
    result = verify("INV-2026-001", 5, [], claimed={"INV-2026-001"})

    assert result.status == "duplicate"
    assert result.expected_amount is None


def test_verify_missing_items_before_amount_mismatch() -> None:
    result = verify("INV-2026-001", 5, [])

    assert result.status == "missing_items"
    assert result.expected_amount == 2700


def test_verify_amount_mismatch_reports_expected_amount() -> None:
    result = verify("INV-2026-001", 1800, [{"description": "Consultation fee", "amount": 1800}])

    assert result.status == "amount_mismatch"
    assert result.expected_amount == 2700
    assert "KES 1,800.00" in result.message
    assert "KES 2,700.00" in result.message


def test_verify_amount_within_tolerance() -> None:
    assert verify("INV-2026-001", 2700.004, _first_invoice_items()).status == "valid"
    assert verify("INV-2026-001", 2700.02, _first_invoice_items()).status == "amount_mismatch"


def test_batch_verify_does_not_cross_check_rows() -> None:
    items = [LineItem(description="Consultation fee", amount=1800), LineItem(description="Follow-up visit", amount=900)]
    drafts = [ClaimDraft(invoice_number="INV-2026-001", amount=2700, items=items) for _ in range(2)]

    results = batch_verify(drafts, catalog=KNOWN_INVOICE_MAP)

    assert [r.status for r in results] == ["valid", "valid"]
