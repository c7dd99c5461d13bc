from __future__ import annotations

import asyncio
import random
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

import structlog

from .catalog import KNOWN_INVOICE_MAP, CatalogEntry
from .models import ClaimDraft, LineItem, SubmitResult, VerifyResult
from .store import ClaimedSet
from .verification import batch_verify as verify_rows, verify


logger = structlog.get_logger(__name__)


class SubmissionError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Latency:
    verify_s: float = 0.6
    submit_s: float = 0.4
    jitter_s: float = 0.3

    @classmethod
    def none(cls) -> "Latency":
        return cls(verify_s=0.0, submit_s=0.0, jitter_s=0.0)


class ClaimsApi:
    """Simulated claims service: catalog verification plus claimed-set tracking."""

    def __init__(
        self,
        claimed: ClaimedSet,
        *,
        catalog: Mapping[str, CatalogEntry] = KNOWN_INVOICE_MAP,
        latency: Latency | None = None,
    ) -> None:
        self.claimed = claimed
        self.catalog = catalog
        self.latency = latency or Latency()

    async def verify_invoice(
        self,
        invoice_number: str,
        amount: object,
        items: Sequence[LineItem | Mapping] | None,
    ) -> VerifyResult:
        await self._delay(self.latency.verify_s)
        return verify(invoice_number, amount, items, catalog=self.catalog, claimed=self.claimed.snapshot())

    async def batch_verify(self, drafts: Iterable[ClaimDraft]) -> list[VerifyResult]:
        # One snapshot for the whole batch; rows are not checked against each other.
        claimed = self.claimed.snapshot()
        drafts = list(drafts)
        await self._delay(self.latency.verify_s)
        results = verify_rows(drafts, catalog=self.catalog, claimed=claimed)
        logger.info("batch_verified", rows=len(drafts), statuses=_count(r.status for r in results))
        return results

    async def submit_claim(self, draft: ClaimDraft) -> SubmitResult:
        await self._delay(self.latency.submit_s)
        if not draft.invoice_number.strip():
            raise SubmissionError("Cannot submit a claim without an invoice number.")
        self.claimed.add(draft.invoice_number)
        return SubmitResult(success=True, claim_id=f"CLM-{uuid.uuid4().hex[:10].upper()}", status="processing")

    async def batch_submit(self, drafts: Iterable[ClaimDraft]) -> list[SubmitResult | BaseException]:
        return list(await asyncio.gather(*(self.submit_claim(d) for d in drafts), return_exceptions=True))

    async def _delay(self, base_s: float) -> None:
        if base_s <= 0 and self.latency.jitter_s <= 0:
            return
        await asyncio.sleep(max(0.0, base_s) + random.uniform(0.0, max(0.0, self.latency.jitter_s)))


def _count(values: Iterable[str]) -> dict[str, int]:
    out: dict[str, int] = {}
    for v in values:
        out[v] = out.get(v, 0) + 1
    return out
