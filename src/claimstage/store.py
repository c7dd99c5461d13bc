from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping

import structlog
from pydantic import ValidationError

from .catalog import INVOICE_CATALOG, seed_status
from .http_client import HttpRequestError, get_json
from .models import Claim, LineItem, SeedPayload
from .rules.normalization import normalize_invoice_number
from .storage import KeyValueStore


logger = structlog.get_logger(__name__)

SCHEMA_VERSION = "2.0.0"
CLAIMS_KEY = "claimstage.claims"
SCHEMA_VERSION_KEY = "claimstage.schema_version"
CLAIMED_SET_KEY = "claimstage.claimed_set"

SEED_REJECTION_REASON = "Amount mismatch - please review and resubmit."

SeedLoader = Callable[[], object]


class ClaimNotFoundError(KeyError):
    pass


class SeedFetchError(RuntimeError):
    pass


class ClaimStoreCorruptError(RuntimeError):
    pass


class ClaimedSet:
    """Invoice numbers that were successfully submitted, upper-cased."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def __contains__(self, invoice_number: object) -> bool:
        return normalize_invoice_number(invoice_number) in self.snapshot()

    def __len__(self) -> int:
        return len(self.snapshot())

    def snapshot(self) -> frozenset[str]:
        raw = self.kv.get(CLAIMED_SET_KEY)
        if not raw:
            return frozenset()
        try:
            values = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("claimed_set_corrupt", key=CLAIMED_SET_KEY)
            return frozenset()
        if not isinstance(values, list):
            return frozenset()
        return frozenset(str(v) for v in values)

    def add(self, invoice_number: str) -> str:
        key = normalize_invoice_number(invoice_number)
        current = set(self.snapshot())
        if key not in current:
            current.add(key)
            self.kv.set(CLAIMED_SET_KEY, json.dumps(sorted(current)))
        return key

    def clear(self) -> None:
        self.kv.set(CLAIMED_SET_KEY, "[]")


def build_seed_claims() -> list[Claim]:
    claims: list[Claim] = []
    for idx, inv in enumerate(INVOICE_CATALOG):
        status = seed_status(idx)
        submitted = status in ("disbursed", "processing")
        claims.append(
            Claim(
                id=f"claim-seed-{idx}",
                invoice_number=inv.invoice_number,
                amount=inv.amount,
                items=[LineItem.model_validate(item.model_dump()) for item in inv.items],
                facility=inv.facility,
                payment_point=inv.payment_point,
                date=inv.date,
                submitted_at=f"{inv.date}T08:30:00" if submitted else None,
                status=status,
                claim_id=f"CLM-{200000 + idx}" if submitted else None,
                rejection_reason=SEED_REJECTION_REASON if status == "rejected" else None,
            )
        )
    return claims


def build_seed_payload() -> dict:
    payload = SeedPayload(version=SCHEMA_VERSION, claims=build_seed_claims())
    return payload.model_dump(mode="json", by_alias=True)


def http_seed_loader(url: str, *, timeout_s: float = 5.0) -> SeedLoader:
    def load() -> object:
        return get_json(url, timeout_s=timeout_s)

    return load


class ClaimStore:
    def __init__(self, kv: KeyValueStore, *, seed_loader: SeedLoader | None = None) -> None:
        self.kv = kv
        self.claimed = ClaimedSet(kv)
        self.seed_loader = seed_loader or build_seed_payload

    def initialize(self) -> list[Claim]:
        stored_version = self.kv.get(SCHEMA_VERSION_KEY)
        if self.kv.get(CLAIMS_KEY) is None or _version_tuple(stored_version) < _version_tuple(SCHEMA_VERSION):
            claims = build_seed_claims()
            self._save(claims)
            self.kv.set(SCHEMA_VERSION_KEY, SCHEMA_VERSION)
            logger.info("claims_seeded", count=len(claims), previous_version=stored_version)
            return claims
        return self.get_claims()

    def get_claims(self) -> list[Claim]:
        try:
            return self._read_claims()
        except ClaimStoreCorruptError:
            logger.warning("claims_corrupt", key=CLAIMS_KEY)
            return []

    def check_writable(self) -> None:
        self._read_claims()

    def get_claim(self, claim_id: str) -> Claim:
        for claim in self.get_claims():
            if claim.id == claim_id:
                return claim
        raise ClaimNotFoundError(claim_id)

    def set_claims(self, claims: Iterable[Claim]) -> list[Claim]:
        claims = list(claims)
        self._save(claims)
        return claims

    def add_claim(self, claim: Claim) -> Claim:
        self.add_claims([claim])
        return claim

    def add_claims(self, claims: Iterable[Claim]) -> list[Claim]:
        new_claims = list(claims)
        self._save([*self._read_claims(), *new_claims])
        return new_claims

    def update_claim(self, claim_id: str, patch: Mapping[str, object]) -> Claim:
        claims = self._read_claims()
        for idx, claim in enumerate(claims):
            if claim.id != claim_id:
                continue
            merged = {**claim.model_dump(), **_snake_keys(patch)}
            updated = Claim.model_validate(merged)
            claims[idx] = updated
            self._save(claims)
            return updated
        raise ClaimNotFoundError(claim_id)

    def reset_to_seed_file(self) -> list[Claim]:
        try:
            payload = SeedPayload.model_validate(self.seed_loader())
        except HttpRequestError as exc:
            raise SeedFetchError(f"Could not fetch seed data: {exc}") from exc
        except ValidationError as exc:
            raise SeedFetchError(f"Seed data is invalid: {exc.error_count()} validation error(s)") from exc

        self._save(payload.claims)
        self.claimed.clear()
        self.kv.set(SCHEMA_VERSION_KEY, SCHEMA_VERSION)
        logger.info("claims_reset", count=len(payload.claims), seed_version=payload.version)
        return payload.claims

    def _read_claims(self) -> list[Claim]:
        # Strict read for every path that writes the list back.
        raw = self.kv.get(CLAIMS_KEY)
        if not raw:
            return []
        try:
            data = json.loads(raw)
            return [Claim.model_validate(item) for item in data]
        except (json.JSONDecodeError, TypeError, ValidationError) as exc:
            raise ClaimStoreCorruptError(
                f"Stored claims under {CLAIMS_KEY} are unreadable; refusing to overwrite."
            ) from exc

    def _save(self, claims: list[Claim]) -> None:
        data = [c.model_dump(mode="json", by_alias=True) for c in claims]
        self.kv.set(CLAIMS_KEY, json.dumps(data, ensure_ascii=False))


def _version_tuple(value: str | None) -> tuple[int, ...]:
    if not value:
        return ()
    parts = []
    for part in value.split("."):
        digits = "".join(ch for ch in part if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def _snake_keys(patch: Mapping[str, object]) -> dict[str, object]:
    out: dict[str, object] = {}
    for key, value in patch.items():
        out["".join(f"_{c.lower()}" if c.isupper() else c for c in key)] = value
    return out
