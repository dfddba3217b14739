from __future__ import annotations

from fastapi import HTTPException, status

from gestion_demandes.workflow.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateError,
    WorkflowError,
    WorkflowValidationError,
)

_STATUS_BY_ERROR: list[tuple[type[WorkflowError], int]] = [
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StateError, status.HTTP_409_CONFLICT),
    (WorkflowValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def http_error(exc: WorkflowError) -> HTTPException:
    """Maps a workflow error to the HTTP error returned to clients."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail={"detail": exc.message, "code": exc.code})
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"detail": exc.message, "code": exc.code},
    )
