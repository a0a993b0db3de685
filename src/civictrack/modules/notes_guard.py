"""Notes guard — redaction and identifier checks for free text.

Citizens and staff type contact details into notes all the time.  Every
note passes through :func:`sanitise_notes` before it reaches the record
store, the status history, or a notification; the logging pipeline runs
:func:`redact_pii` over every string value it renders.
"""

from __future__ import annotations

import re

# Most specific first so that partial matches don't pre-empt full ones.
_PII_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("EMAIL", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("PHONE", re.compile(r"(?<![\w-])(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}(?![\w-])")),
]

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# Identifiers: UUIDs, slugs, report numbers.
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_\-.:]{1,128}$")

DEFAULT_NOTES_MAX_LENGTH = 2000


def redact_pii(text: str) -> str:
    """Replace e-mail addresses and phone numbers with ``[REDACTED-<TYPE>]``."""
    for label, pattern in _PII_PATTERNS:
        text = pattern.sub(f"[REDACTED-{label}]", text)
    return text


def sanitise_notes(notes: str | None, *, max_length: int = DEFAULT_NOTES_MAX_LENGTH) -> str:
    """Trim, strip control characters, cap the length and redact PII."""
    if not notes:
        return ""
    notes = _CONTROL_CHARS.sub("", notes).strip()
    return redact_pii(notes[:max_length])


def validate_id(value: str, *, field: str = "id") -> str:
    """Return *value* stripped, or raise ``ValueError`` if it is not a safe identifier."""
    value = value.strip()
    if not value:
        raise ValueError(f"{field} must not be empty")
    if not _SAFE_ID_RE.match(value):
        raise ValueError(f"{field} contains invalid characters or is too long: {value!r}")
    return value
