"""Redaction utilities for trace logs and frame dumps.

This module prefers safety over perfect fidelity: by default it removes
obvious secrets (cookies, auth headers, tokens in URLs) and truncates large
payloads such as base64 screenshots before a frame reaches a log or a file.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .sensitivity import is_sensitive_header, is_sensitive_key

REDACTED = "<redacted>"


def _looks_like_query_string(value: str) -> bool:
    return isinstance(value, str) and "=" in value


def _redact_pairs(raw: str) -> tuple[str, bool]:
    pairs = parse_qsl(raw, keep_blank_values=True)
    redacted_any = False
    out_pairs: list[tuple[str, str]] = []
    for k, v in pairs:
        if is_sensitive_key(k) and v:
            out_pairs.append((k, REDACTED))
            redacted_any = True
        else:
            out_pairs.append((k, v))
    if not redacted_any:
        return raw, False
    return urlencode(out_pairs, doseq=True), True


def redact_url(url: str) -> str:
    """Redact suspicious URL parameters without destroying normal queries.

    - Keeps non-sensitive query params intact.
    - Redacts values for keys like token/auth/secret/api-key.
    - Sanitizes the fragment when it looks like a query string (OAuth-style).
    - Removes userinfo (`user:pass@host`) from netloc.

    Returns the original URL unchanged when no redaction is needed.
    """
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    changed = False
    netloc = parts.netloc
    query = parts.query
    fragment = parts.fragment

    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True
    if query:
        query, did = _redact_pairs(query)
        changed = changed or did
    if fragment and _looks_like_query_string(fragment):
        fragment, did = _redact_pairs(fragment)
        changed = changed or did

    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, fragment))


def _redacted_summary(value: Any) -> str:
    if value is None:
        return REDACTED
    if isinstance(value, (bytes, bytearray)):
        return f"<redacted bytes len={len(value)}>"
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    if isinstance(value, (list, tuple, set)):
        return f"<redacted list len={len(value)}>"
    if isinstance(value, dict):
        # BiDi BytesValue: {"type": "string"|"base64", "value": ...}
        inner = value.get("value")
        if isinstance(inner, str):
            return f"<redacted str len={len(inner)}>"
        return f"<redacted dict keys={len(value)}>"
    return REDACTED


def redact_headers(headers: Any) -> Any:
    """Redact sensitive header values.

    Accepts both a plain mapping and the BiDi list form
    ``[{"name": ..., "value": {"type": "string", "value": ...}}]``.
    """
    if isinstance(headers, dict):
        return {k: (_redacted_summary(v) if is_sensitive_header(str(k)) else v) for k, v in headers.items()}
    if isinstance(headers, list):
        out = []
        for header in headers:
            if isinstance(header, dict) and is_sensitive_header(str(header.get("name") or "")):
                h = dict(header)
                h["value"] = _redacted_summary(h.get("value"))
                out.append(h)
            else:
                out.append(header)
        return out
    return headers


def _redact_cookie(cookie: Any) -> Any:
    if isinstance(cookie, dict) and "value" in cookie:
        c = dict(cookie)
        c["value"] = _redacted_summary(c.get("value"))
        return c
    return cookie


def _truncate(text: str, max_text_chars: int | None) -> str:
    if max_text_chars is None or max_text_chars <= 0 or len(text) <= max_text_chars:
        return text
    return text[:max_text_chars] + f"… <truncated len={len(text)}>"


def _redact_value(value: Any, *, key: str | None, max_text_chars: int | None) -> Any:
    lk = (key or "").lower()

    if isinstance(value, dict):
        if lk == "cookie":
            return _redact_cookie(value)
        if lk == "headers":
            return redact_headers(value)
        return {k: _redact_value(v, key=str(k), max_text_chars=max_text_chars) for k, v in value.items()}

    if isinstance(value, list):
        if lk == "headers":
            return redact_headers(value)
        if lk == "cookies":
            return [_redact_cookie(c) for c in value]
        return [_redact_value(v, key=key, max_text_chars=max_text_chars) for v in value]

    if isinstance(value, str):
        if lk == "url":
            return _truncate(redact_url(value), max_text_chars)
        if is_sensitive_key(lk):
            return _redacted_summary(value)
        return _truncate(value, max_text_chars)

    if lk and is_sensitive_key(lk) and value is not None and not isinstance(value, (bool, int, float)):
        return _redacted_summary(value)
    return value


def redact_frame_for_dump(frame: dict[str, Any], *, max_text_chars: int | None = None) -> dict[str, Any]:
    """Redact a BiDi frame (command, response or event) for logs and dumps.

    Notes:
    - Cookie values and sensitive header values are replaced with summaries.
    - URLs lose credentials and secret-looking query parameters.
    - Long strings (screenshots, page sources) are truncated to ``max_text_chars``.
    """
    if not isinstance(frame, dict):
        return {}
    return {k: _redact_value(v, key=str(k), max_text_chars=max_text_chars) for k, v in frame.items()}
