"""Translate domain exceptions into HTTP errors.

Routers catch `LaunchlensError` and re-raise `to_http_exception(e)`;
storage errors are left alone and surface as 500s.
"""

from fastapi import HTTPException, status

from ..services.exceptions import (
    InvalidSharePasswordError,
    LaunchlensError,
    NotFoundError,
    ShareExpiredError,
    ShareNotFoundError,
    SharePasswordRequiredError,
    ValidationError,
)

_STATUS_BY_TYPE = (
    (ShareNotFoundError, status.HTTP_404_NOT_FOUND),
    (ShareExpiredError, status.HTTP_410_GONE),
    (SharePasswordRequiredError, status.HTTP_401_UNAUTHORIZED),
    (InvalidSharePasswordError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
)


def to_http_exception(exc: LaunchlensError) -> HTTPException:
    for exc_type, code in _STATUS_BY_TYPE:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=code, detail=exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
