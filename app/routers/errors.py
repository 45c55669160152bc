"""Translate service exceptions into HTTP errors."""
from fastapi import HTTPException, status

from app.exceptions import ForbiddenError, NotFoundError, StateConflictError


def to_http_exception(exc: Exception) -> HTTPException:
    """
    Map a service-layer exception to an HTTPException.

    State conflicts carry a machine-readable reason so clients can show a
    precise message.
    """
    if isinstance(exc, StateConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"reason": exc.reason.value, "message": exc.message},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
