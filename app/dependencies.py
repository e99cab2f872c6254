from fastapi import HTTPException, Request

from app.services.scratcher_errors import (
    RolloverRequiredError,
    ScratcherConflictError,
    ScratcherIntegrityError,
    ScratcherNotFoundError,
)


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def http_error(exc: Exception) -> HTTPException:
    """Translate a scratcher service error into the matching HTTP response."""
    if isinstance(exc, RolloverRequiredError):
        return HTTPException(status_code=409, detail={'error': str(exc), 'rollover_slots': exc.slots})
    if isinstance(exc, ScratcherNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ScratcherConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ScratcherIntegrityError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
