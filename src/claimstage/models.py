from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


DraftStatus = Literal["pending", "valid", "amount_mismatch", "missing_items", "unknown", "duplicate"]
VerifyStatus = Literal["valid", "amount_mismatch", "missing_items", "unknown", "duplicate"]
ClaimStatus = Literal["disbursed", "processing", "rejected", "unsubmitted"]
DraftSource = Literal["spreadsheet", "ocr", "manual"]

INVALID_STATUSES: frozenset[str] = frozenset({"unknown", "missing_items", "duplicate", "amount_mismatch"})
PROTECTED_FIELDS: frozenset[str] = frozenset({"invoice_number", "amount", "items"})
EDITABLE_FIELDS: frozenset[str] = PROTECTED_FIELDS | {"facility", "payment_point", "date"}


def new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItem(CamelModel):
    id: str = Field(default_factory=new_id)
    description: str = ""
    amount: float = Field(default=0.0, ge=0)


class Invoice(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    invoice_number: str
    facility: str
    payment_point: str
    date: str
    amount: float
    items: tuple[LineItem, ...]


class ColumnMapping(CamelModel):
    invoice_col: str | None = None
    amount_col: str | None = None
    items_col: str | None = None
    facility_col: str | None = None
    payment_point_col: str | None = None
    date_col: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.invoice_col) and bool(self.amount_col)

    def missing_required(self) -> list[str]:
        missing = []
        if not self.invoice_col:
            missing.append("invoice_col")
        if not self.amount_col:
            missing.append("amount_col")
        return missing


class SpreadsheetTable(CamelModel):
    headers: list[str] = Field(default_factory=list)
    rows: list[dict[str, str]] = Field(default_factory=list)

    @property
    def sample_rows(self) -> list[dict[str, str]]:
        return self.rows[:3]


class VerifyResult(CamelModel):
    status: VerifyStatus
    message: str
    expected_amount: float | None = None


class ClaimDraft(CamelModel):
    id: str = Field(default_factory=new_id)
    invoice_number: str = ""
    amount: float = 0.0
    items: list[LineItem] = Field(default_factory=list)
    facility: str = ""
    payment_point: str = ""
    date: str = ""
    status: DraftStatus = "pending"
    verify_result: VerifyResult | None = None
    raw_row: dict[str, str] | None = None
    source: DraftSource = "manual"


class OcrGuess(CamelModel):
    invoice_number: str | None = None
    amount: float | None = None
    date: str | None = None
    provider: str | None = None
    items: list[LineItem] = Field(default_factory=list)
    raw_text: str = ""


class SubmitResult(CamelModel):
    success: bool
    claim_id: str
    status: ClaimStatus = "processing"


class Claim(CamelModel):
    id: str
    invoice_number: str
    amount: float
    items: list[LineItem] = Field(default_factory=list)
    facility: str = ""
    payment_point: str = ""
    date: str = ""
    submitted_at: str | None = None
    status: ClaimStatus = "unsubmitted"
    claim_id: str | None = None
    rejection_reason: str | None = None


class SeedPayload(CamelModel):
    version: str
    claims: list[Claim]
