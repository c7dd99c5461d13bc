from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


_FALSY = {"0", "false", "False", "no", ""}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}.") from exc


@dataclass(frozen=True, slots=True)
class Settings:
    seed_url: str | None = None
    seed_timeout_s: float = 5.0
    verify_delay_s: float = 0.6
    submit_delay_s: float = 0.4
    delay_jitter_s: float = 0.3
    column_rules_path: Path | None = None
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        rules = os.getenv("CLAIMSTAGE_COLUMN_RULES")
        return cls(
            seed_url=os.getenv("CLAIMSTAGE_SEED_URL") or None,
            seed_timeout_s=_float_env("CLAIMSTAGE_SEED_TIMEOUT_S", 5.0),
            verify_delay_s=_float_env("CLAIMSTAGE_VERIFY_DELAY_S", 0.6),
            submit_delay_s=_float_env("CLAIMSTAGE_SUBMIT_DELAY_S", 0.4),
            delay_jitter_s=_float_env("CLAIMSTAGE_DELAY_JITTER_S", 0.3),
            column_rules_path=Path(rules) if rules else None,
            log_level=os.getenv("CLAIMSTAGE_LOG_LEVEL", "INFO").upper(),
            log_json=os.getenv("CLAIMSTAGE_LOG_JSON", "0") not in _FALSY,
        )
