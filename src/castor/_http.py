"""HTTP status sets shared by error classification and retry.

Kept in its own module to avoid circular imports between providers and core.
"""

from __future__ import annotations

RATE_LIMIT_STATUS_CODE = 429

# Transient failures worth another attempt.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 500, 502, 503, 504})

# Failures that will not succeed on retry without caller changes.
UNRECOVERABLE_STATUS_CODES: frozenset[int] = frozenset(
    {400, 401, 403, 404, 409, 422}
)
