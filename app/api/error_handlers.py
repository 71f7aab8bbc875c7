import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.core.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    OperationTimeoutError,
    PartialFailureError,
    PersistenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order, so subclasses come before their parents
STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (OperationTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PartialFailureError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: LedgerError) -> int:
    for error_class, code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LedgerError)
    async def handle_ledger_error(request: Request, exc: LedgerError):
        code = status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content=exc.to_dict())
