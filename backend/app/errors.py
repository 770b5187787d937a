"""
errors.py — AppError base class and error code registry.

Every error returned by the ChipLedger API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time,
    but must keep naming the expected bound and the actual value where one
    exists, so the caller can correct the input.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Validation Errors (400) ────────────────────────────────────────────
    # Always raised before anything is written.
    MISSING_FIELD               = "MISSING_FIELD"
    INVALID_FIELD               = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION    = "INVALID_AMOUNT_PRECISION"
    AMOUNT_OUT_OF_RANGE         = "AMOUNT_OUT_OF_RANGE"
    INVALID_ENTRY_KIND          = "INVALID_ENTRY_KIND"
    INVALID_PAYMENT_METHOD      = "INVALID_PAYMENT_METHOD"
    INVALID_AUDIT_TABLE         = "INVALID_AUDIT_TABLE"

    # ── Integrity Errors (422) ─────────────────────────────────────────────
    # Settlement is aborted as a whole; no transfer is written.
    BALANCE_MISMATCH            = "BALANCE_MISMATCH"
    TRANSFER_AMOUNT_OUT_OF_RANGE = "TRANSFER_AMOUNT_OUT_OF_RANGE"

    # ── State Errors (409) ─────────────────────────────────────────────────
    # Not retried automatically.
    SESSION_NOT_CLOSED          = "SESSION_NOT_CLOSED"
    SESSION_ALREADY_CLOSED      = "SESSION_ALREADY_CLOSED"
    SETTLEMENT_ALREADY_COMPUTED = "SETTLEMENT_ALREADY_COMPUTED"
    TRANSFER_ALREADY_PAID       = "TRANSFER_ALREADY_PAID"
    TRANSFER_NOT_PAID           = "TRANSFER_NOT_PAID"
    PARTICIPANT_ALREADY_ADDED   = "PARTICIPANT_ALREADY_ADDED"

    # ── Concurrency (503) ──────────────────────────────────────────────────
    # Safe to retry: settlement computation is idempotent.
    SETTLEMENT_LOCK_TIMEOUT     = "SETTLEMENT_LOCK_TIMEOUT"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    SESSION_NOT_FOUND           = "SESSION_NOT_FOUND"
    PARTICIPANT_NOT_FOUND       = "PARTICIPANT_NOT_FOUND"
    ENTRY_NOT_FOUND             = "ENTRY_NOT_FOUND"
    TRANSFER_NOT_FOUND          = "TRANSFER_NOT_FOUND"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    TOKEN_MISSING               = "TOKEN_MISSING"          # 401
    TOKEN_INVALID               = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED               = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                   = "FORBIDDEN"              # 403

    # ── Routing Errors ─────────────────────────────────────────────────────
    ROUTE_NOT_FOUND             = "ROUTE_NOT_FOUND"        # 404
    METHOD_NOT_ALLOWED          = "METHOD_NOT_ALLOWED"     # 405

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR              = "INTERNAL_ERROR"
