# Overview: Maps domain errors to JSON error responses.

from __future__ import annotations

from flask import request

from ..services.lifecycle_service import LifecycleError
from ..validation import ConflictError, NotFoundError, PeriodLockedError, ValidationError


DOMAIN_ERRORS = (ValidationError, NotFoundError, ConflictError, PeriodLockedError, LifecycleError)


def error_response(exc: Exception):
    if isinstance(exc, NotFoundError):
        return {"error": str(exc)}, 404
    if isinstance(exc, PeriodLockedError):
        return {"error": str(exc), "period": exc.period}, 409
    if isinstance(exc, (ConflictError, LifecycleError)):
        return {"error": str(exc)}, 409
    return {"error": str(exc)}, 400


def actor_id() -> str | None:
    """Caller identity is supplied by the fronting auth layer."""
    return request.headers.get("X-Actor-Id") or None
