from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Seam for tests."""
    return datetime.now(timezone.utc)


def random_token(nbytes: int = 32) -> str:
    """URL-safe random token (OAuth `state`)."""
    return secrets.token_urlsafe(nbytes)


def constant_time_equals(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def sanitize_next_path(next_path: str | None) -> str:
    """
    Post-login redirect target: only same-origin absolute paths like `/settings`.
    Anything else collapses to `/`.
    """
    p = (next_path or "").replace("\r", "").replace("\n", "").strip()
    # `//host` and `/\host` are treated as scheme-relative URLs by browsers.
    if not p.startswith("/") or p.startswith("//") or p.startswith("/\\"):
        return "/"
    return p
