"""
HTTP mapping for the authority error taxonomy.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    CardLedgerError,
    Conflict,
    Forbidden,
    NotFound,
    RateLimited,
    ValidationError,
)
from ..sync.snapshot import SnapshotInvalid

STATUS_CODES = {
    ValidationError: 422,
    SnapshotInvalid: 422,
    RateLimited: 429,
    Forbidden: 403,
    NotFound: 404,
    Conflict: 409,
}


def status_for(exc: CardLedgerError) -> int:
    for error_type, status in STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status
    return 400


async def cardledger_error_handler(request: Request, exc: CardLedgerError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimited) and exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(
        status_code=status_for(exc),
        content={"detail": str(exc), "code": exc.code},
        headers=headers,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CardLedgerError, cardledger_error_handler)
