from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from ...extraction.invoice_text_v1 import parse_invoice_text
from ...mock_api import ClaimsApi, Latency
from ...models import Claim, ClaimDraft, ColumnMapping, SpreadsheetTable
from ...normalizer import apply_mapping, draft_from_guess
from ...project_paths import ProjectPaths
from ...rules.columns import auto_detect
from ...rules.loader import DEFAULT_COLUMN_RULES, ColumnRules
from ...settings import Settings
from ...spreadsheet import SpreadsheetParseError, parse_spreadsheet
from ...staging import StagingSession
from ...storage import JsonFileKeyValueStore
from ...store import ClaimStore, http_seed_loader


logger = structlog.get_logger(__name__)


class SessionNotFoundError(KeyError):
    pass


@dataclass(slots=True)
class UploadOutcome:
    session: StagingSession
    mapping: ColumnMapping
    table: SpreadsheetTable | None = None

    @property
    def needs_mapping(self) -> bool:
        return self.table is not None


@dataclass(slots=True)
class ClaimsOrchestrator:
    store: ClaimStore
    api: ClaimsApi
    column_rules: ColumnRules = DEFAULT_COLUMN_RULES
    sessions: dict[str, StagingSession] = field(default_factory=dict)
    pending_tables: dict[str, SpreadsheetTable] = field(default_factory=dict)

    @classmethod
    def detect(cls, settings: Settings | None = None) -> "ClaimsOrchestrator":
        settings = settings or Settings.from_env()
        paths = ProjectPaths.detect()
        paths.ensure_dirs()

        seed_loader = (
            http_seed_loader(settings.seed_url, timeout_s=settings.seed_timeout_s) if settings.seed_url else None
        )
        store = ClaimStore(JsonFileKeyValueStore(paths.store_path), seed_loader=seed_loader)
        store.initialize()

        latency = Latency(
            verify_s=settings.verify_delay_s,
            submit_s=settings.submit_delay_s,
            jitter_s=settings.delay_jitter_s,
        )
        rules = DEFAULT_COLUMN_RULES
        if settings.column_rules_path is not None:
            rules = ColumnRules.load_from_file(settings.column_rules_path)

        return cls(store=store, api=ClaimsApi(store.claimed, latency=latency), column_rules=rules)

    def new_session(self, drafts: Sequence[ClaimDraft] = ()) -> StagingSession:
        session = StagingSession(self.api, self.store, drafts)
        self.sessions[session.id] = session
        return session

    def session(self, session_id: str) -> StagingSession:
        try:
            return self.sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    def close_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.pending_tables.pop(session_id, None)

    async def submit_session(self, session_id: str, draft_ids: Sequence[str] | None = None) -> list[Claim]:
        session = self.session(session_id)
        claims = await session.submit_valid(draft_ids)
        if claims and not len(session) and session_id not in self.pending_tables:
            self.close_session(session_id)
            logger.info("session_closed", session=session_id, submitted=len(claims))
        return claims

    def stage_spreadsheet(
        self, content: bytes, *, filename: str | None = None, content_type: str | None = None
    ) -> UploadOutcome:
        table = parse_spreadsheet(content, filename, content_type)
        if not table.headers:
            raise SpreadsheetParseError("The file does not contain a header row.")

        mapping = auto_detect(table.headers, self.column_rules)
        if not mapping.is_complete:
            session = self.new_session()
            self.pending_tables[session.id] = table
            logger.info(
                "upload_needs_mapping",
                session=session.id,
                filename=filename,
                headers=table.headers,
                missing=mapping.missing_required(),
            )
            return UploadOutcome(session=session, mapping=mapping, table=table)

        session = self.new_session(apply_mapping(table.rows, mapping))
        logger.info("upload_staged", session=session.id, filename=filename, rows=len(session))
        return UploadOutcome(session=session, mapping=mapping)

    def confirm_mapping(self, session_id: str, mapping: ColumnMapping) -> StagingSession:
        session = self.session(session_id)
        table = self.pending_tables.get(session_id)
        if table is None:
            raise ValueError(f"Session {session_id} is not waiting for a column mapping.")
        if not mapping.is_complete:
            raise ValueError(f"Mapping is missing: {', '.join(mapping.missing_required())}")
        unknown = [
            col
            for col in mapping.model_dump().values()
            if col is not None and col not in table.headers
        ]
        if unknown:
            raise ValueError(f"Unknown columns: {', '.join(unknown)}")

        session.add_rows(apply_mapping(table.rows, mapping))
        del self.pending_tables[session_id]
        logger.info("mapping_confirmed", session=session_id, rows=len(session))
        return session

    def stage_ocr_pages(self, page_texts: Sequence[str]) -> StagingSession:
        drafts = [
            draft_from_guess(parse_invoice_text(text), fallback_invoice_number=f"PAGE-{idx + 1}")
            for idx, text in enumerate(page_texts)
        ]
        session = self.new_session(drafts)
        logger.info("ocr_pages_staged", session=session.id, pages=len(drafts))
        return session

    def extract_single(self, text: str) -> ClaimDraft:
        return draft_from_guess(parse_invoice_text(text))
