"""
Maps backend failures to an ErrorType.

Structured signals (HTTP status, Python exception class) are consulted first.
When they are absent or unmapped, the error message and POSIX-style code are
matched against an ordered rule table; the first matching rule wins.
"""

import errno
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from routing.routing_types import ErrorType


@dataclass(frozen=True)
class ErrorSignal:
    message: str
    code: str | None = None
    status: int | None = None


def _contains(*needles: str) -> Callable[[ErrorSignal], bool]:
    return lambda signal: any(needle in signal.message for needle in needles)


def _code_in(*codes: str) -> Callable[[ErrorSignal], bool]:
    return lambda signal: signal.code is not None and signal.code.upper() in codes


def _any(*predicates: Callable[[ErrorSignal], bool]) -> Callable[[ErrorSignal], bool]:
    return lambda signal: any(p(signal) for p in predicates)


# Priority order: rate_limit > quota_exceeded > timeout > capability >
# invalid_response > transient > unknown.
MESSAGE_RULES: tuple[tuple[Callable[[ErrorSignal], bool], ErrorType], ...] = (
    (_contains("429", "rate limit", "too many requests"), ErrorType.RATE_LIMIT),
    (_contains("quota", "resource_exhausted", "billing"), ErrorType.QUOTA_EXCEEDED),
    (
        _any(_contains("timeout", "timed out"), _code_in("ETIMEDOUT", "ESOCKETTIMEDOUT")),
        ErrorType.TIMEOUT,
    ),
    (_contains("context length", "too long", "token limit", "max_tokens"), ErrorType.CAPABILITY),
    (
        _contains("invalid json", "parse error", "malformed", "unexpected token"),
        ErrorType.INVALID_RESPONSE,
    ),
    (
        _any(
            _contains("network", "connection", "econnreset", "enotfound"),
            _code_in("ECONNRESET", "ENOTFOUND", "ECONNREFUSED"),
        ),
        ErrorType.TRANSIENT,
    ),
    (_contains("500", "502", "503", "504"), ErrorType.TRANSIENT),
)

STATUS_RULES: dict[int, ErrorType] = {
    429: ErrorType.RATE_LIMIT,
    402: ErrorType.QUOTA_EXCEEDED,
    408: ErrorType.TIMEOUT,
    413: ErrorType.CAPABILITY,
    500: ErrorType.TRANSIENT,
    502: ErrorType.TRANSIENT,
    503: ErrorType.TRANSIENT,
    504: ErrorType.TIMEOUT,
}


def error_message(error: Any) -> str:
    """The error's message as the caller raised it, for logs and attempt history."""
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    if isinstance(error, Mapping):
        message = error.get("message")
    else:
        message = getattr(error, "message", None)
    return str(message) if message is not None else str(error)


def extract_signal(error: Any) -> ErrorSignal:
    """Pull message, code and status from an exception, object or mapping."""
    if isinstance(error, str):
        return ErrorSignal(message=error.lower())
    if isinstance(error, Mapping):
        message = error.get("message")
        code = error.get("code")
        status = error.get("status_code", error.get("status"))
    else:
        message = getattr(error, "message", None)
        if message is None and isinstance(error, BaseException):
            message = str(error)
        code = getattr(error, "code", None)
        status = getattr(error, "status_code", getattr(error, "status", None))
        if code is None and isinstance(error, OSError) and error.errno is not None:
            code = errno.errorcode.get(error.errno)

    if isinstance(status, str) and status.isdigit():
        status = int(status)
    if not isinstance(status, int) or isinstance(status, bool):
        status = None

    return ErrorSignal(
        message=str(message or "").lower(),
        code=str(code) if code is not None else None,
        status=status,
    )


def classify_error(error: Any) -> ErrorType:
    signal = extract_signal(error)
    if signal.status is not None and signal.status in STATUS_RULES:
        return STATUS_RULES[signal.status]
    if isinstance(error, TimeoutError):
        return ErrorType.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorType.TRANSIENT

    for predicate, error_type in MESSAGE_RULES:
        if predicate(signal):
            return error_type

    return ErrorType.UNKNOWN
