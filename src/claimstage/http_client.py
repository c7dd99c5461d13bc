from __future__ import annotations

import json
import urllib.error
import urllib.request


class HttpRequestError(RuntimeError):
    pass


def get_json(url: str, *, timeout_s: float = 5.0) -> object:
    req = urllib.request.Request(
        url,
        headers={"Accept": "application/json", "Cache-Control": "no-cache"},
        method="GET",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            body = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
        raise HttpRequestError(f"HTTP {exc.code} from {url}: {body}") from exc
    except urllib.error.URLError as exc:
        raise HttpRequestError(f"Request to {url} failed: {exc.reason}") from exc

    try:
        return json.loads(body) if body else {}
    except json.JSONDecodeError as exc:
        raise HttpRequestError(f"Invalid JSON from {url}: {exc}") from exc
