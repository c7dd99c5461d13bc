from __future__ import annotations

from datetime import date
from functools import lru_cache
from typing import Annotated, Literal

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import Field

from ...dashboard import ClaimPage, ClaimQuery, ClaimStats, SortField, claim_stats, query_claims, remittance_summary
from ...logging_config import configure_logging
from ...models import CamelModel, Claim, ClaimDraft, ClaimStatus, ColumnMapping, LineItem, VerifyResult
from ...normalizer import apply_edit, manual_draft
from ...settings import Settings
from ...spreadsheet import SpreadsheetParseError
from ...staging import DraftNotFoundError, SessionBusyError, StagingError, StagingSession, submit_draft
from ...store import ClaimNotFoundError, ClaimStoreCorruptError, SeedFetchError, build_seed_payload
from .orchestrator import ClaimsOrchestrator, SessionNotFoundError


class SessionView(CamelModel):
    session_id: str
    rows: list[ClaimDraft]
    selected: list[str] = Field(default_factory=list)
    counts: dict[str, int] = Field(default_factory=dict)
    total_value: float = 0.0
    is_verifying: bool = False
    is_submitting: bool = False


class UploadResponse(CamelModel):
    session: SessionView
    mapping: ColumnMapping
    needs_mapping: bool = False
    headers: list[str] = Field(default_factory=list)
    sample_rows: list[dict[str, str]] = Field(default_factory=list)


class SubmitResponse(CamelModel):
    session: SessionView
    submitted: list[Claim]
    session_closed: bool = False


class DraftInput(CamelModel):
    invoice_number: str = ""
    amount: float | str = 0
    items: list[LineItem] | str = Field(default_factory=list)
    facility: str = ""
    payment_point: str = ""
    date: str = ""


class OcrPagesRequest(CamelModel):
    pages: list[str] = Field(min_length=1)


class OcrTextRequest(CamelModel):
    text: str = Field(min_length=1)


class IdsRequest(CamelModel):
    ids: list[str] | None = None


class SingleSubmitRequest(CamelModel):
    draft: ClaimDraft
    existing_claim_id: str | None = None


class ResetResponse(CamelModel):
    claims: list[Claim]


app = FastAPI(title="Claimstage Claims Service", version="0.1.0")


@app.exception_handler(ClaimStoreCorruptError)
async def claim_store_corrupt(request: Request, exc: ClaimStoreCorruptError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@lru_cache(maxsize=1)
def get_orchestrator() -> ClaimsOrchestrator:
    settings = Settings.from_env()
    configure_logging(settings.log_level, json_output=settings.log_json)
    return ClaimsOrchestrator.detect(settings)


Orchestrator = Annotated[ClaimsOrchestrator, Depends(get_orchestrator)]


def _view(session: StagingSession) -> SessionView:
    return SessionView(
        session_id=session.id,
        rows=session.rows,
        selected=sorted(session.selected),
        counts=session.counts_by_status(),
        total_value=session.total_value(),
        is_verifying=session.is_verifying,
        is_submitting=session.is_submitting,
    )


def _session(orchestrator: ClaimsOrchestrator, session_id: str) -> StagingSession:
    try:
        return orchestrator.session(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown staging session {session_id}") from None


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


# -- claims ------------------------------------------------------------------


@app.get("/claims", response_model=ClaimPage)
def list_claims(
    orchestrator: Orchestrator,
    search: str = "",
    status: ClaimStatus | None = None,
    facility: str | None = None,
    payment_point: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    sort: SortField = "date",
    direction: Literal["asc", "desc"] = "desc",
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=500),
) -> ClaimPage:
    query = ClaimQuery(
        search=search,
        status=status,
        facility=facility,
        payment_point=payment_point,
        date_from=date_from,
        date_to=date_to,
        sort=sort,
        direction=direction,
        page=page,
        page_size=page_size,
    )
    return query_claims(orchestrator.store.get_claims(), query)


@app.get("/claims/stats", response_model=ClaimStats)
def get_claim_stats(orchestrator: Orchestrator) -> ClaimStats:
    return claim_stats(orchestrator.store.get_claims())


@app.get("/claims/{claim_id}", response_model=Claim)
def get_claim(claim_id: str, orchestrator: Orchestrator) -> Claim:
    try:
        return orchestrator.store.get_claim(claim_id)
    except ClaimNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown claim {claim_id}") from None


@app.get("/claims/{claim_id}/remittance", response_class=PlainTextResponse)
def get_remittance(claim_id: str, orchestrator: Orchestrator) -> str:
    try:
        return remittance_summary(orchestrator.store.get_claim(claim_id))
    except ClaimNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown claim {claim_id}") from None


@app.post("/claims/reset", response_model=ResetResponse)
def reset_claims(orchestrator: Orchestrator) -> ResetResponse:
    try:
        return ResetResponse(claims=orchestrator.store.reset_to_seed_file())
    except SeedFetchError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/seed-data.json")
def seed_data() -> dict:
    return build_seed_payload()


# -- bulk staging --------------------------------------------------------------


@app.post("/staging/upload", response_model=UploadResponse)
async def upload_spreadsheet(orchestrator: Orchestrator, file: UploadFile = File(...)) -> UploadResponse:
    content = await file.read()
    try:
        outcome = orchestrator.stage_spreadsheet(content, filename=file.filename, content_type=file.content_type)
    except SpreadsheetParseError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Failed to process the file. Please check the format and try again. ({exc})",
        ) from exc

    table = outcome.table
    return UploadResponse(
        session=_view(outcome.session),
        mapping=outcome.mapping,
        needs_mapping=outcome.needs_mapping,
        headers=table.headers if table else [],
        sample_rows=table.sample_rows if table else [],
    )


@app.post("/staging/{session_id}/mapping", response_model=SessionView)
def confirm_mapping(session_id: str, mapping: ColumnMapping, orchestrator: Orchestrator) -> SessionView:
    _session(orchestrator, session_id)
    try:
        return _view(orchestrator.confirm_mapping(session_id, mapping))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/staging/ocr-pages", response_model=SessionView)
def stage_ocr_pages(req: OcrPagesRequest, orchestrator: Orchestrator) -> SessionView:
    return _view(orchestrator.stage_ocr_pages(req.pages))


@app.get("/staging/{session_id}", response_model=SessionView)
def get_session(session_id: str, orchestrator: Orchestrator) -> SessionView:
    return _view(_session(orchestrator, session_id))


@app.delete("/staging/{session_id}")
def close_session(session_id: str, orchestrator: Orchestrator) -> dict:
    _session(orchestrator, session_id)
    orchestrator.close_session(session_id)
    return {"status": "closed"}


@app.post("/staging/{session_id}/rows", response_model=ClaimDraft)
def add_row(session_id: str, req: DraftInput, orchestrator: Orchestrator) -> ClaimDraft:
    session = _session(orchestrator, session_id)
    return session.add_manual_row(**req.model_dump())


@app.patch("/staging/{session_id}/rows/{draft_id}", response_model=ClaimDraft)
def update_row(session_id: str, draft_id: str, patch: dict, orchestrator: Orchestrator) -> ClaimDraft:
    session = _session(orchestrator, session_id)
    try:
        return session.update_row(draft_id, patch)
    except DraftNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown row {draft_id}") from None
    except SessionBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/staging/{session_id}/rows/{draft_id}", response_model=SessionView)
def delete_row(session_id: str, draft_id: str, orchestrator: Orchestrator) -> SessionView:
    session = _session(orchestrator, session_id)
    try:
        session.delete_row(draft_id)
    except DraftNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown row {draft_id}") from None
    return _view(session)


@app.post("/staging/{session_id}/rows/delete", response_model=SessionView)
def delete_rows(session_id: str, req: IdsRequest, orchestrator: Orchestrator) -> SessionView:
    session = _session(orchestrator, session_id)
    if req.ids is None:
        session.delete_selected()
    else:
        session.delete_many(req.ids)
    return _view(session)


@app.post("/staging/{session_id}/select-invalid", response_model=SessionView)
def select_invalid(session_id: str, orchestrator: Orchestrator) -> SessionView:
    session = _session(orchestrator, session_id)
    session.select_invalid()
    return _view(session)


@app.post("/staging/{session_id}/verify", response_model=SessionView)
async def verify_all(session_id: str, orchestrator: Orchestrator) -> SessionView:
    session = _session(orchestrator, session_id)
    try:
        await session.verify_all()
    except SessionBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _view(session)


@app.post("/staging/{session_id}/rows/{draft_id}/rescale", response_model=ClaimDraft)
def rescale_row(session_id: str, draft_id: str, orchestrator: Orchestrator) -> ClaimDraft:
    session = _session(orchestrator, session_id)
    try:
        return session.rescale_to_expected(draft_id)
    except DraftNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown row {draft_id}") from None
    except SessionBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StagingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/staging/{session_id}/submit", response_model=SubmitResponse)
async def submit_valid(session_id: str, req: IdsRequest, orchestrator: Orchestrator) -> SubmitResponse:
    session = _session(orchestrator, session_id)
    try:
        submitted = await orchestrator.submit_session(session_id, req.ids)
    except SessionBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    closed = session_id not in orchestrator.sessions
    return SubmitResponse(session=_view(session), submitted=submitted, session_closed=closed)


# -- single claim --------------------------------------------------------------


@app.post("/single/extract", response_model=ClaimDraft)
def extract_single(req: OcrTextRequest, orchestrator: Orchestrator) -> ClaimDraft:
    return orchestrator.extract_single(req.text)


async def _verified(orchestrator: ClaimsOrchestrator, draft: ClaimDraft) -> ClaimDraft:
    # Re-derive the amount from items before checking, as every edit path does.
    normalized = apply_edit(draft, {"items": draft.items, "amount": draft.amount})
    result: VerifyResult = await orchestrator.api.verify_invoice(
        normalized.invoice_number, normalized.amount, normalized.items
    )
    return normalized.model_copy(update={"status": result.status, "verify_result": result})


@app.post("/single/verify", response_model=ClaimDraft)
async def verify_single(draft: ClaimDraft, orchestrator: Orchestrator) -> ClaimDraft:
    return await _verified(orchestrator, draft)


@app.post("/single/submit", response_model=Claim)
async def submit_single(req: SingleSubmitRequest, orchestrator: Orchestrator) -> Claim:
    draft = await _verified(orchestrator, req.draft)
    try:
        return await submit_draft(orchestrator.api, orchestrator.store, draft, existing_claim_id=req.existing_claim_id)
    except ClaimNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown claim {req.existing_claim_id}") from None
    except StagingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/single/manual", response_model=ClaimDraft)
def manual_single(req: DraftInput) -> ClaimDraft:
    return manual_draft(**req.model_dump())
