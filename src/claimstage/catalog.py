from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from .models import Invoice, LineItem


FACILITIES: tuple[str, ...] = (
    "Jumuia Huruma",
    "Jumuia Kikuyu",
    "Jumuia Huruma Annex",
    "Jumuia Masii",
    "Jumuia Turbo",
    "Jumuia Nangina",
    "Jumuia Chogoria",
)


@dataclass(frozen=True, slots=True)
class PaymentPoint:
    name: str
    items: tuple[tuple[str, float], ...]


PAYMENT_POINTS: tuple[PaymentPoint, ...] = (
    PaymentPoint("Consultation", (("Consultation fee", 1800), ("Follow-up visit", 900), ("Specialist referral", 600))),
    PaymentPoint(
        "Laboratory",
        (("Blood panel (FBC)", 1200), ("Urinalysis", 600), ("Lipid profile", 1800), ("Renal function tests", 2000)),
    ),
    PaymentPoint("Pharmacy", (("Prescription drugs", 3200), ("Medical supplies", 800), ("IV fluids (1 L)", 600))),
    PaymentPoint("Radiology", (("Chest X-Ray", 1500), ("Abdominal ultrasound", 3500), ("CT scan (head)", 12000))),
    PaymentPoint("Theatre", (("Surgical procedure", 25000), ("Anaesthesia", 8000), ("Theatre consumables", 4000))),
    PaymentPoint(
        "Physiotherapy",
        (("Assessment session", 1500), ("Exercise therapy (10)", 8000), ("Hydrotherapy session", 2000)),
    ),
    PaymentPoint("Dental", (("Dental examination", 800), ("Tooth extraction", 2500), ("Scaling & polishing", 1500))),
    PaymentPoint("Emergency", (("Emergency assessment", 2500), ("Trauma care", 8000), ("Observation (4 hrs)", 3000))),
    PaymentPoint(
        "Maternity",
        (
            ("Antenatal care", 2800),
            ("Normal delivery", 12000),
            ("Postnatal care (3 days)", 6000),
            ("Newborn examination", 1500),
        ),
    ),
    PaymentPoint("Ophthalmology", (("Eye examination", 1500), ("Visual field test", 2800), ("Lens prescription", 800))),
    PaymentPoint("Inpatient", (("Ward charges (2 days)", 7000), ("Nursing care", 2000), ("Meals (2 days)", 1600))),
    PaymentPoint(
        "Nutrition",
        (("Nutrition assessment", 1200), ("Dietary counselling", 800), ("Supplement provision", 2500)),
    ),
)

CATALOG_SIZE = 100
ITEM_COUNT_CYCLE: tuple[int, ...] = (2, 3, 1, 2, 1, 3, 2, 3, 2, 1, 3, 2)
PINNED_DAY_OFFSETS: tuple[int, ...] = (0, 3, 6, 9, 12, 15, 31, 38, 45, 52, 59, 66)
ANCHOR_DATE = date(2026, 2, 23)

_STATUS_CYCLE_TAIL = ("disbursed", "processing", "rejected", "unsubmitted")


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    amount: float
    item_descriptions: tuple[str, ...]


def build_invoice(index: int) -> Invoice:
    seq = index + 1
    payment_point = PAYMENT_POINTS[index % len(PAYMENT_POINTS)]
    count = min(ITEM_COUNT_CYCLE[index % len(ITEM_COUNT_CYCLE)], len(payment_point.items))

    items = tuple(
        LineItem(id=f"cat-{seq}-{description[:6]}", description=description, amount=price)
        for description, price in payment_point.items[:count]
    )
    days_ago = PINNED_DAY_OFFSETS[index] if index < len(PINNED_DAY_OFFSETS) else 10 + (index - 12) * 2

    return Invoice(
        invoice_number=f"INV-2026-{seq:03d}",
        facility=FACILITIES[index % len(FACILITIES)],
        payment_point=payment_point.name,
        date=(ANCHOR_DATE - timedelta(days=days_ago)).isoformat(),
        amount=sum(item.amount for item in items),
        items=items,
    )


def build_catalog() -> list[Invoice]:
    return [build_invoice(index) for index in range(CATALOG_SIZE)]


def build_lookup(invoices: list[Invoice]) -> dict[str, CatalogEntry]:
    return {
        inv.invoice_number.upper(): CatalogEntry(
            amount=inv.amount,
            item_descriptions=tuple(item.description for item in inv.items),
        )
        for inv in invoices
    }


def seed_status(index: int) -> str:
    if index <= 2:
        return "disbursed"
    if index <= 5:
        return "processing"
    if index <= 8:
        return "rejected"
    if index <= 86:
        return "unsubmitted"
    return _STATUS_CYCLE_TAIL[(index - 87) % len(_STATUS_CYCLE_TAIL)]


INVOICE_CATALOG: tuple[Invoice, ...] = tuple(build_catalog())
KNOWN_INVOICE_MAP: dict[str, CatalogEntry] = build_lookup(list(INVOICE_CATALOG))
