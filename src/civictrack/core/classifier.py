"""Error classifier — raw failures to a closed set of typed kinds.

``classify()`` inspects the lower-cased message and the ``code`` /
``status_code`` of any raw failure and walks ``_RULES`` in order; the
first rule whose predicate matches picks the kind.  Nothing matches →
``UNKNOWN``.  The function never raises.

Rule order matters.  More specific categories sit in front of the
broad ones that would otherwise swallow them (``cooldown`` before
``rate limit``, ``email delivery`` before ``invalid email``,
``unavailable`` before ``server``, ``disabled`` before ``not found``).
"""

from __future__ import annotations

import asyncio
import traceback
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from civictrack.core.errors import (
    OperationFailed,
    PermissionDenied,
    ReportNotFound,
    StaleRecord,
    Unauthenticated,
)
from civictrack.core.models import ClassifiedError, RecoveryAction

logger = structlog.get_logger()


class ErrorKind(str, Enum):
    INVALID_TOKEN = "INVALID_TOKEN"
    RATE_LIMITED = "RATE_LIMITED"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    EMAIL_DELIVERY_FAILED = "EMAIL_DELIVERY_FAILED"
    INVALID_EMAIL = "INVALID_EMAIL"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    SERVER_ERROR = "SERVER_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class _KindInfo:
    message: str
    user_message: str
    retryable: bool
    action: RecoveryAction


_A = RecoveryAction

ERROR_KINDS: dict[ErrorKind, _KindInfo] = {
    ErrorKind.INVALID_TOKEN: _KindInfo(
        "Invalid or expired token",
        "Your verification code or session is invalid or has expired. "
        "Please request a new one.",
        True, _A.RESEND,
    ),
    ErrorKind.RATE_LIMITED: _KindInfo(
        "Too many requests",
        "Too many requests. Please wait a moment before trying again.",
        True, _A.RETRY,
    ),
    ErrorKind.COOLDOWN_ACTIVE: _KindInfo(
        "Cooldown period active",
        "Please wait before repeating this request.",
        True, _A.RETRY,
    ),
    ErrorKind.EMAIL_DELIVERY_FAILED: _KindInfo(
        "Failed to deliver email",
        "We couldn't send the email. Please check the address and try again.",
        True, _A.RETRY,
    ),
    ErrorKind.INVALID_EMAIL: _KindInfo(
        "Invalid email address or input",
        "Please check the email address or value you entered.",
        False, _A.NONE,
    ),
    ErrorKind.NETWORK_ERROR: _KindInfo(
        "Network connection error",
        "Connection error. Please check your connection and try again.",
        True, _A.RETRY,
    ),
    ErrorKind.TIMEOUT: _KindInfo(
        "Request timeout",
        "The request timed out. Please try again.",
        True, _A.RETRY,
    ),
    ErrorKind.SERVER_ERROR: _KindInfo(
        "Internal server error",
        "Something went wrong on our end. Please try again in a moment.",
        True, _A.RETRY,
    ),
    ErrorKind.SERVICE_UNAVAILABLE: _KindInfo(
        "Service temporarily unavailable",
        "The service is temporarily unavailable. Please try again later.",
        True, _A.RETRY,
    ),
    ErrorKind.USER_NOT_FOUND: _KindInfo(
        "Record not found or changed",
        "We couldn't find what you were looking for, or it changed in the meantime. "
        "Please refresh the page and try again.",
        False, _A.REFRESH_PAGE,
    ),
    ErrorKind.ACCOUNT_DISABLED: _KindInfo(
        "Account is disabled",
        "Your account has been disabled. Please contact support for assistance.",
        False, _A.CONTACT_SUPPORT,
    ),
    ErrorKind.UNKNOWN: _KindInfo(
        "An unknown error occurred",
        "Something unexpected happened. Please try again or contact support "
        "if the problem persists.",
        True, _A.RETRY,
    ),
}


@dataclass(frozen=True)
class _Signal:
    """What the rules get to look at."""

    error: Any
    text: str
    code: str


def _has(sig: _Signal, *tokens: str) -> bool:
    return any(t in sig.text for t in tokens)


_Rule = tuple[ErrorKind, Callable[[_Signal], bool]]

_RULES: list[_Rule] = [
    (ErrorKind.USER_NOT_FOUND, lambda s: isinstance(s.error, (ReportNotFound, StaleRecord))),
    (ErrorKind.INVALID_TOKEN, lambda s: isinstance(s.error, Unauthenticated)),
    (ErrorKind.ACCOUNT_DISABLED, lambda s: isinstance(s.error, PermissionDenied)),
    (ErrorKind.COOLDOWN_ACTIVE, lambda s: _has(s, "cooldown", "cool down", "wait before")),
    (ErrorKind.RATE_LIMITED, lambda s: _has(s, "rate limit", "too many") or s.code == "429"),
    (
        ErrorKind.INVALID_TOKEN,
        lambda s: (_has(s, "invalid", "expired") and _has(s, "token", "otp", "jwt", "code"))
        or _has(s, "expired"),
    ),
    (
        ErrorKind.EMAIL_DELIVERY_FAILED,
        lambda s: _has(s, "email", "smtp") and _has(s, "send", "deliver", "bounce", "smtp"),
    ),
    (
        ErrorKind.INVALID_EMAIL,
        lambda s: isinstance(s.error, (ValueError, TypeError, KeyError)) or _has(s, "email"),
    ),
    (
        ErrorKind.TIMEOUT,
        lambda s: isinstance(s.error, (TimeoutError, asyncio.TimeoutError))
        or _has(s, "timeout", "timed out")
        or s.code == "408",
    ),
    (
        ErrorKind.NETWORK_ERROR,
        lambda s: isinstance(s.error, ConnectionError)
        or _has(s, "network", "fetch", "connection"),
    ),
    (
        ErrorKind.SERVICE_UNAVAILABLE,
        lambda s: _has(s, "unavailable", "database is locked", "busy")
        or s.code == "503",
    ),
    (
        ErrorKind.SERVER_ERROR,
        lambda s: _has(s, "server") or (len(s.code) == 3 and s.code.startswith("5")),
    ),
    (ErrorKind.ACCOUNT_DISABLED, lambda s: _has(s, "disabled", "blocked", "suspended")),
    (ErrorKind.USER_NOT_FOUND, lambda s: _has(s, "not found", "no such", "user")),
]


def _extract_code(error: Any) -> str:
    for attr in ("code", "status_code", "status"):
        value = getattr(error, attr, None)
        if value is not None and not isinstance(value, Enum):
            return str(value)
    return ""


def _extract_text(error: Any) -> str:
    if isinstance(error, str):
        return error.lower()
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message.lower()
    return str(error).lower() if error is not None else ""


def _signal(error: Any) -> _Signal:
    try:
        return _Signal(error=error, text=_extract_text(error), code=_extract_code(error))
    except Exception:  # a broken __str__ must not break classification
        return _Signal(error=error, text="", code="")


def build(kind: ErrorKind) -> ClassifiedError:
    info = ERROR_KINDS[kind]
    return ClassifiedError(
        code=kind.value,
        message=info.message,
        user_message=info.user_message,
        retryable=info.retryable,
        action=info.action,
    )


def classify(error: Any) -> ClassifiedError:
    """Map any raw failure (exception, string, ``None``) to a :class:`ClassifiedError`."""
    if isinstance(error, OperationFailed):
        return error.classified

    sig = _signal(error)
    for kind, matches in _RULES:
        try:
            if matches(sig):
                return build(kind)
        except Exception:
            continue
    return build(ErrorKind.UNKNOWN)


# ── Presentation helpers ────────────────────────────────────
@dataclass(frozen=True)
class RecoveryOption:
    label: str
    action: str
    primary: bool


_ACTION_LABELS: dict[RecoveryAction, str] = {
    RecoveryAction.RETRY: "Try Again",
    RecoveryAction.RESEND: "Request New Code",
    RecoveryAction.CONTACT_SUPPORT: "Contact Support",
    RecoveryAction.REFRESH_PAGE: "Refresh Page",
}


def recovery_actions(error: ClassifiedError) -> list[RecoveryOption]:
    """UI suggestions for *error*: its primary action (if any), then "Go Back"."""
    options: list[RecoveryOption] = []
    label = _ACTION_LABELS.get(error.action)
    if label is not None:
        options.append(RecoveryOption(label=label, action=error.action.value, primary=True))
    options.append(RecoveryOption(label="Go Back", action="go_back", primary=False))
    return options


def log_error(error: BaseException, context: str, **data: Any) -> ClassifiedError:
    """Log the raw diagnostic of *error* with its classification; return the latter."""
    classified = classify(error)
    logger.error(
        "operation_error",
        context=context,
        error=str(error),
        error_type=type(error).__name__,
        error_code=classified.code,
        retryable=classified.retryable,
        stack="".join(traceback.format_exception(error)),
        **data,
    )
    return classified
