from claimstage.catalog import (
    INVOICE_CATALOG,
    KNOWN_INVOICE_MAP,
    build_catalog,
    build_lookup,
    seed_status,
)


def test_catalog_has_100_invoices_in_sequence() -> None:
    catalog = build_catalog()

    assert len(catalog) == 100
    assert catalog[0].invoice_number == "INV-2026-001"
    assert catalog[99].invoice_number == "INV-2026-100"


def test_every_invoice_amount_is_the_sum_of_its_items() -> None:
    for inv in build_catalog():
        assert inv.amount == sum(item.amount for item in inv.items)


def test_build_catalog_is_deterministic() -> None:
    first = [inv.model_dump() for inv in build_catalog()]
    second = [inv.model_dump() for inv in build_catalog()]

    assert first == second


def test_first_invoice_takes_two_consultation_items() -> None:
    inv = build_catalog()[0]

    assert inv.facility == "Jumuia Huruma"
    assert inv.payment_point == "Consultation"
    assert inv.date == "2026-02-23"
    assert [item.description for item in inv.items] == ["Consultation fee", "Follow-up visit"]
    assert [item.id for item in inv.items] == ["cat-1-Consul", "cat-1-Follow"]
    assert inv.amount == 2700


def test_item_count_cycle_and_dates() -> None:
    catalog = build_catalog()

    # index 1: Laboratory, 3 items
    assert catalog[1].payment_point == "Laboratory"
    assert [i.description for i in catalog[1].items] == ["Blood panel (FBC)", "Urinalysis", "Lipid profile"]
    assert catalog[1].amount == 3600
    assert catalog[1].date == "2026-02-20"

    # index 12 wraps the payment points and starts the computed offsets (10 days)
    assert catalog[12].payment_point == "Consultation"
    assert catalog[12].date == "2026-02-13"
    assert catalog[13].date == "2026-02-11"
    assert catalog[12].facility == "Jumuia Nangina"


def test_lookup_is_keyed_by_upper_case_number() -> None:
    lookup = build_lookup(list(INVOICE_CATALOG))

    assert set(lookup) == set(KNOWN_INVOICE_MAP)
    entry = lookup["INV-2026-004"]
    assert entry.amount == INVOICE_CATALOG[3].amount
    assert entry.item_descriptions == tuple(i.description for i in INVOICE_CATALOG[3].items)


def test_seed_status_slots() -> None:
    assert [seed_status(i) for i in range(9)] == ["disbursed"] * 3 + ["processing"] * 3 + ["rejected"] * 3
    assert seed_status(9) == "unsubmitted"
    assert seed_status(86) == "unsubmitted"
    assert [seed_status(i) for i in range(87, 92)] == [
        "disbursed",
        "processing",
        "rejected",
        "unsubmitted",
        "disbursed",
    ]
