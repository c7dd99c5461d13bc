from __future__ import annotations

import re
import unicodedata


_NON_ALNUM = re.compile(r"[^0-9a-z]+")
_WS = re.compile(r"\s+")


def normalize_header(value: object) -> str:
    if value is None:
        return ""
    text = str(value).casefold()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _NON_ALNUM.sub(" ", text)
    return _WS.sub(" ", text).strip()


def normalize_invoice_number(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()
