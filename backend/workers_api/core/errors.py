"""
Error taxonomy shared by the services, the REST layer and the console client.

Every failure path returns one of these to the caller; the API renders them
with the same body shape used for HTTP errors (error_code, message, details).
"""
from __future__ import annotations

from typing import Any


class WorkersError(Exception):
    error_code = 'WORKERS_ERROR'
    status_code = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_body(self) -> dict:
        return {'error_code': self.error_code, 'message': self.message, 'details': self.details}


class ValidationError(WorkersError):
    error_code = 'VALIDATION_ERROR'
    status_code = 400


class NoOpError(WorkersError):
    error_code = 'NO_CHANGES'
    status_code = 400


class PreconditionError(WorkersError):
    error_code = 'PRECONDITION_FAILED'
    status_code = 409


class RangeNotCompletedError(PreconditionError):
    error_code = 'RANGE_NOT_COMPLETED'


class ConflictError(WorkersError):
    error_code = 'CONFLICT'
    status_code = 409


class NotFoundError(WorkersError):
    error_code = 'NOT_FOUND'
    status_code = 404


class AuthExpiredError(WorkersError):
    error_code = 'UNAUTHORIZED'
    status_code = 401


class ExternalPortalError(WorkersError):
    error_code = 'PORTAL_UNAVAILABLE'
    status_code = 503


_BY_CODE = {
    cls.error_code: cls
    for cls in (
        ValidationError,
        NoOpError,
        PreconditionError,
        RangeNotCompletedError,
        ConflictError,
        NotFoundError,
        AuthExpiredError,
        ExternalPortalError,
    )
}

_BY_STATUS = {
    400: ValidationError,
    401: AuthExpiredError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
    503: ExternalPortalError,
}


def error_from_body(status_code: int, body: Any) -> WorkersError:
    """Rebuild a typed error from an API error body (used by the console client)."""
    payload = body if isinstance(body, dict) else {}
    code = str(payload.get('error_code') or '')
    message = str(payload.get('message') or f'HTTP {status_code}')
    cls = _BY_CODE.get(code) or _BY_STATUS.get(status_code) or WorkersError
    err = cls(message, payload.get('details'))
    if cls is WorkersError:
        err.status_code = status_code
    return err
