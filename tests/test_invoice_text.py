from claimstage.extraction.invoice_text_v1 import parse_invoice_text
from claimstage.normalizer import draft_from_guess


def test_parse_invoice_text_with_catalog_number() -> None:
    text = "\n".join(
        [
            "Jumuia Kikuyu Hospital",
            "Invoice No: INV-2026-002",
            "Date: 20/02/2026",
            "Blood panel (FBC) KES 1,200.00",
            "Urinalysis 600",
            "Lipid profile 1800",
            "TOTAL KES 3,600.00",
        ]
    )

    guess = parse_invoice_text(text)

    assert guess.invoice_number == "INV-2026-002"
    assert guess.date == "2026-02-20"
    assert guess.provider == "Jumuia Kikuyu Hospital"
    assert guess.amount == 3600
    assert [(i.description, i.amount) for i in guess.items] == [
        ("Blood panel (FBC)", 1200.0),
        ("Urinalysis", 600.0),
        ("Lipid profile", 1800.0),
    ]
    assert guess.raw_text == text


def test_parse_invoice_text_with_labels() -> None:
    text = "\n".join(
        [
            "INVOICE",
            "Facility: Jumuia Turbo",
            "Invoice #: A-1029",
            "Date: 11.02.2026",
            "Antenatal care 2800",
            "Newborn examination 1,500",
            "Grand Total 4300",
        ]
    )

    guess = parse_invoice_text(text)

    assert guess.invoice_number == "A-1029"
    assert guess.provider == "Jumuia Turbo"
    assert guess.date == "2026-02-11"
    assert guess.amount == 4300
    assert [i.description for i in guess.items] == ["Antenatal care", "Newborn examination"]


def test_unreadable_page_becomes_blank_draft() -> None:
    guess = parse_invoice_text("~~~\n")

    draft = draft_from_guess(guess, fallback_invoice_number="PAGE-3")

    assert guess.invoice_number is None
    assert guess.items == []
    assert draft.invoice_number == "PAGE-3"
    assert draft.amount == 0
    assert draft.status == "pending"
