from typing import Any, Optional


class AppError(Exception):
    """Base error carrying the HTTP status the API layer should answer with."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, status_code: Optional[int] = None, **extra: Any):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra
        super().__init__(message)


class ValidationError(AppError):
    status_code = 400
    error = "validation_error"


class InvalidRatio(ValidationError):
    def __init__(self, ratio: dict):
        super().__init__(
            "Difficulty ratio must sum to 100",
            ratio=ratio,
        )


class NotFoundError(AppError):
    status_code = 404
    error = "not_found"


class StateConflictError(AppError):
    status_code = 400
    error = "state_conflict"

    def __init__(self, message: str, hint: Optional[str] = None, **extra: Any):
        super().__init__(message, **extra)
        self.hint = hint
        if hint:
            self.extra["hint"] = hint


class InsufficientDataError(AppError):
    status_code = 400
    error = "insufficient_data"


class InsufficientQuestions(InsufficientDataError):
    def __init__(self, lo_id: Optional[int] = None, message: Optional[str] = None):
        self.lo_id = lo_id
        super().__init__(
            message or f"Not enough questions available for LO {lo_id}",
            lo_id=lo_id,
        )


class ExternalStoreError(AppError):
    status_code = 503
    error = "external_store_error"


class LockTimeoutError(ExternalStoreError):
    status_code = 409
    error = "lock_timeout"
