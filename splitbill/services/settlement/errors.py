"""Settlement error codes and exceptions."""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Settlement error codes."""

    INVALID_AMOUNT = "INVALID_AMOUNT"
    AMOUNT_EXCEEDS_REMAINING = "AMOUNT_EXCEEDS_REMAINING"
    NOTHING_SELECTED = "NOTHING_SELECTED"
    QUANTITY_EXCEEDS_REMAINING = "QUANTITY_EXCEEDS_REMAINING"
    SESSION_CLOSED = "SESSION_CLOSED"
    INVALID_SPLIT = "INVALID_SPLIT"
    ATTEMPT_ALREADY_RECORDED = "ATTEMPT_ALREADY_RECORDED"
    INVALID_ENTITY = "INVALID_ENTITY"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    STORE_FAILURE = "STORE_FAILURE"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


class SettlementError(Exception):
    """Base settlement error with code and user-safe message."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(SettlementError):
    """Operator input rejected. Nothing was changed."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message)


class SessionNotFound(SettlementError):
    """Raised when a session does not exist in the store."""

    def __init__(self, session_id: int) -> None:
        super().__init__(
            code=ErrorCode.SESSION_NOT_FOUND,
            message=f"Session {session_id} not found",
        )
        self.session_id = session_id


class ConcurrencyConflict(SettlementError):
    """Another terminal settled part of the bill first."""

    def __init__(self, remaining_cents: int, message: Optional[str] = None) -> None:
        super().__init__(
            code=ErrorCode.CONCURRENCY_CONFLICT,
            message=message or "Another payment was recorded for this bill in the meantime",
        )
        self.remaining_cents = remaining_cents


class StoreFailure(SettlementError):
    """The ledger append failed. Never retried automatically."""

    def __init__(self, message: str = "Could not record the payment") -> None:
        super().__init__(code=ErrorCode.STORE_FAILURE, message=message)


class InvariantViolation(SettlementError):
    """Ledger state that cannot be reached through valid submits."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.INVARIANT_VIOLATION, message=message)
