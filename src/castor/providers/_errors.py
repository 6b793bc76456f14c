"""Shared vendor error classification.

Vendor SDK exceptions are inspected, never wrapped. Classification walks the
exception chain for an HTTP status first and only falls back to message
keywords when no status is available.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from castor._http import (
    RATE_LIMIT_STATUS_CODE,
    RETRYABLE_STATUS_CODES,
    UNRECOVERABLE_STATUS_CODES,
)
from castor.constants import RATE_LIMIT_DELAY_MS
from castor.errors import APIError, _walk_exception_chain
from castor.providers.models import ClassifiedError, ErrorCategory

_RATE_LIMIT_KEYWORDS = ("rate limit", "rate_limit", "quota exceeded", "too many requests")
_TRANSIENT_KEYWORDS = (
    "timeout",
    "timed out",
    "connection",
    "econnrefused",
    "econnreset",
)


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _extract_retry_info_seconds(exc: BaseException) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details.

    Gemini SDK ``ClientError`` exposes the parsed JSON body via ``.details``
    shaped like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}
    """
    details: Any = getattr(exc, "details", None)
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error")
    if not isinstance(error, dict):
        return None
    detail_list: Any = error.get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after_s", None)
        if value is None:
            value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is not None:
            raw: Any = None
            try:
                raw = headers.get("Retry-After")
            except (AttributeError, TypeError):
                raw = None
            if isinstance(raw, str) and raw.strip():
                try:
                    seconds = float(raw)
                except ValueError:
                    seconds = None
                if seconds is not None and seconds >= 0:
                    return seconds

        retry_info = _extract_retry_info_seconds(e)
        if retry_info is not None:
            return retry_info
    return None


def _is_transient_network_error(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
            return True
        # RequestError is the stable base class for transport-level failures.
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
            return True
    return False


def rate_limited(exc: BaseException) -> ClassifiedError:
    retry_after = extract_retry_after_s(exc)
    delay_ms = (
        int(retry_after * 1000) if retry_after is not None else RATE_LIMIT_DELAY_MS
    )
    return ClassifiedError(
        error=exc,
        category=ErrorCategory.RATE_LIMIT,
        should_retry=False,
        suggested_delay_ms=delay_ms,
    )


def retryable(exc: BaseException) -> ClassifiedError:
    return ClassifiedError(error=exc, category=ErrorCategory.RETRYABLE, should_retry=True)


def unrecoverable(exc: BaseException) -> ClassifiedError:
    return ClassifiedError(
        error=exc, category=ErrorCategory.UNRECOVERABLE, should_retry=False
    )


def classify_error(
    exc: BaseException,
    *,
    retryable_status_codes: frozenset[int] = RETRYABLE_STATUS_CODES,
    unrecoverable_status_codes: frozenset[int] = UNRECOVERABLE_STATUS_CODES,
) -> ClassifiedError:
    """Map an exception onto the retry taxonomy.

    Order: rate limit status, transient status, permanent status, transport
    errors, message keywords, then ``UNKNOWN`` (retried optimistically).
    Cancellation is never retried.
    """
    if isinstance(exc, asyncio.CancelledError):
        return unrecoverable(exc)

    status_code = extract_status_code(exc)
    if status_code == RATE_LIMIT_STATUS_CODE:
        return rate_limited(exc)
    if status_code in retryable_status_codes:
        return retryable(exc)
    if status_code in unrecoverable_status_codes:
        return unrecoverable(exc)

    if isinstance(exc, APIError) and exc.retryable is not None:
        return retryable(exc) if exc.retryable else unrecoverable(exc)

    if _is_transient_network_error(exc):
        return retryable(exc)

    message = str(exc).lower()
    if any(word in message for word in _RATE_LIMIT_KEYWORDS):
        return rate_limited(exc)
    if any(word in message for word in _TRANSIENT_KEYWORDS):
        return retryable(exc)

    return ClassifiedError(error=exc, category=ErrorCategory.UNKNOWN, should_retry=True)
