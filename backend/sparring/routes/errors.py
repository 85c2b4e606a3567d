from fastapi import HTTPException, status

from ..engine import InvalidTransition, NotAssigned, NotFound, ScoringError, WindowClosed


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (NotFound, LookupError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, NotAssigned):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, (InvalidTransition, WindowClosed)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (ScoringError, ValueError)):
        code = status.HTTP_400_BAD_REQUEST
    else:
        raise exc
    return HTTPException(status_code=code, detail=str(exc))
