from __future__ import annotations

from fastapi import HTTPException, status

from src.metaalert.schemas.common import ErrorResponse
from src.metaalert.services.errors import (
    InvalidArgumentError,
    InvalidSearchError,
    InvalidStateError,
    MetaAlertError,
    NotFoundError,
    UnsupportedOperationError,
)

_STATUS_BY_ERROR = (
    (InvalidArgumentError, status.HTTP_400_BAD_REQUEST),
    (InvalidSearchError, status.HTTP_400_BAD_REQUEST),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (UnsupportedOperationError, status.HTTP_405_METHOD_NOT_ALLOWED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
)

# Shared `responses=` entries for route decorators.
ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# PUBLIC_INTERFACE
def to_http_exception(e: MetaAlertError) -> HTTPException:
    """Map a service error to the HTTPException a route should raise."""
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(e, cls):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
