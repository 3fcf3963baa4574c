"""
Exception handlers - map domain errors to stable HTTP responses.

Clients only ever see ``{"success": false, "error": "<code>"}``. The
exception message, which may name an email address or user id, is logged
and never returned.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from account_guard.domain.exceptions import (
    AccountGuardError,
    AttemptsExceeded,
    Expired,
    Internal,
    InvalidInput,
    NotFound,
    RateLimited,
    StorageConflict,
    TransportFailure,
    Unauthenticated,
)

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[AccountGuardError], int] = {
    InvalidInput: status.HTTP_400_BAD_REQUEST,
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    NotFound: status.HTTP_404_NOT_FOUND,
    Expired: status.HTTP_410_GONE,
    RateLimited: status.HTTP_429_TOO_MANY_REQUESTS,
    AttemptsExceeded: status.HTTP_429_TOO_MANY_REQUESTS,
    TransportFailure: status.HTTP_502_BAD_GATEWAY,
    StorageConflict: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_code_for(exc: AccountGuardError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in _STATUS_CODES:
            return _STATUS_CODES[exc_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def account_guard_error_handler(request: Request, exc: AccountGuardError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.code},
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies get the same stable shape as InvalidInput."""
    fields = [str(error["loc"][-1]) for error in exc.errors() if error.get("loc")]
    logger.warning("%s %s invalid fields: %s", request.method, request.url.path, fields)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": InvalidInput.code},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "%s %s raised an unexpected error", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": Internal.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AccountGuardError, account_guard_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
