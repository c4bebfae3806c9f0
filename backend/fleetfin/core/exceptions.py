"""Custom exception classes for the application.

Every error carries a stable ``error_code`` so the API can render the
``{error, error_code, request_id}`` envelope. Only ``TransientInfraError``
and its subclasses are retried.
"""

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base class for errors rendered through the error envelope."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "UNKNOWN_ERROR"

    def __init__(self, detail: str, error_code: str | None = None):
        super().__init__(status_code=type(self).status_code, detail=detail)
        if error_code is not None:
            self.error_code = error_code


# ── Permanent errors ───────────────────────────────


class ValidationError(AppError):
    """Malformed input or output. Never retried."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"


class InvalidOracleResponseError(ValidationError):
    error_code = "INVALID_ORACLE_RESPONSE"


class RuleBatchValidationError(ValidationError):
    """A batch of rule drafts was rejected before persistence.

    ``rejected`` maps each offending draft index to the reason.
    """

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "INVALID_RULE_BATCH"

    def __init__(self, rejected: dict[int, str]):
        self.rejected = rejected
        reasons = "; ".join(f"index {i}: {reason}" for i, reason in sorted(rejected.items()))
        super().__init__(f"Rejected {len(rejected)} rule(s): {reasons}")


class AuthError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "UNAUTHORIZED"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class DataIntegrityError(AppError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "DATA_INTEGRITY_ERROR"


class TenantIsolationError(DataIntegrityError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "TENANT_ISOLATION_VIOLATION"


class InsufficientHistoryError(DataIntegrityError):
    error_code = "INSUFFICIENT_HISTORY"

    def __init__(self, required: int, found: int):
        self.required = required
        self.found = found
        super().__init__(
            f"Insufficient transaction history. At least {required} transactions required "
            f"({found} found)."
        )


# ── Transient errors (retried) ─────────────────────


class TransientInfraError(AppError):
    """Timeout, dropped connection or upstream throttling."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "UPSTREAM_UNAVAILABLE"


class UpstreamTimeoutError(TransientInfraError):
    status_code = status.HTTP_408_REQUEST_TIMEOUT
    error_code = "TIMEOUT"


class RateLimitedError(TransientInfraError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMITED"
