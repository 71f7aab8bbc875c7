"""
Ledger error taxonomy.

LedgerError (base)
├── ValidationError - rejected before any write happens
├── NotFoundError - referenced debt or account does not exist
├── ConflictError - optimistic version check lost against a concurrent write
├── PersistenceError - the store call itself failed
│   └── OperationTimeoutError - outcome unknown, must be reconciled
└── PartialFailureError - some chained writes applied, compensation failed

The API layer turns these into responses with `to_dict()`; the orchestrator
turns them into user-facing messages.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from pymongo.errors import PyMongoError


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    default_error_code: str = "LEDGER_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class ValidationError(LedgerError):
    default_error_code = "VALIDATION_ERROR"


class NotFoundError(LedgerError):
    default_error_code = "NOT_FOUND"


class ConflictError(LedgerError):
    default_error_code = "CONFLICT"


class PersistenceError(LedgerError):
    default_error_code = "PERSISTENCE_ERROR"


class OperationTimeoutError(PersistenceError):
    default_error_code = "OPERATION_TIMEOUT"


class PartialFailureError(LedgerError):
    """
    Raised when a settlement applied some of its writes and could not undo them.

    The ledger is inconsistent until someone reconciles `operation_id` by hand,
    so this is never folded into an ordinary failure.
    """

    default_error_code = "PARTIAL_FAILURE"

    def __init__(
        self,
        message: str,
        operation_id: str,
        applied_steps: list,
        failed_step: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            details={
                "operation_id": operation_id,
                "applied_steps": list(applied_steps),
                "failed_step": failed_step,
            },
        )
        self.operation_id = operation_id
        self.applied_steps = list(applied_steps)
        self.failed_step = failed_step
        self.cause = cause


@contextmanager
def translate_persistence_errors(action: str) -> Iterator[None]:
    """Re-raise driver errors raised inside the block as PersistenceError."""
    try:
        yield
    except PyMongoError as exc:
        raise PersistenceError(f"Failed to {action}: {exc}") from exc
