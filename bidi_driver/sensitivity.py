"""Small helpers for identifying potentially sensitive keys.

Used by frame dumps and trace logs to avoid leaking secrets (safe-by-default).
"""

from __future__ import annotations

_SENSITIVE_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "passwd",
    "authorization",
    "cookie",
    "jwt",
    "bearer",
    "api-key",
    "api_key",
    "apikey",
)

_SENSITIVE_EXACT = {
    # Avoid false-positives like "author"/"authorship" while still protecting obvious keys.
    "auth",
    "pwd",
    "credentials",
}


def is_sensitive_key(key: str) -> bool:
    k = (key or "").strip().lower()
    if not k:
        return False
    if k in _SENSITIVE_EXACT:
        return True
    return any(s in k for s in _SENSITIVE_SUBSTRINGS)


def is_sensitive_header(name: str) -> bool:
    n = (name or "").strip().lower()
    if n.startswith("authorization") or n.startswith("proxy-authorization"):
        return True
    if n in {"cookie", "set-cookie"}:
        return True
    return is_sensitive_key(n)
