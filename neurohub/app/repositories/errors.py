# app/repositories/errors.py
from google.api_core import exceptions as gexc
from pydantic import ValidationError

from neurohub.app.core.errors import (
    PermissionDenied,
    StoreError,
    StoreUnavailable,
    StoreValidationError,
)

_UNAVAILABLE = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.TooManyRequests,
    gexc.Aborted,
    gexc.RetryError,
    ConnectionError,
    TimeoutError,
    OSError,
)
_DENIED = (gexc.PermissionDenied, gexc.Forbidden, gexc.Unauthenticated, gexc.Unauthorized)
_INVALID = (gexc.InvalidArgument, gexc.FailedPrecondition, gexc.BadRequest, ValidationError,
            ValueError, TypeError)


def classify_store_exception(exc: BaseException, tier: str) -> StoreError:
    """Map a Firestore / transport exception to the store error taxonomy."""
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, _DENIED):
        return PermissionDenied(str(exc), tier=tier)
    if isinstance(exc, _INVALID):
        return StoreValidationError(str(exc), tier=tier)
    if isinstance(exc, _UNAVAILABLE):
        return StoreUnavailable(str(exc), tier=tier)
    # Unknown Google API errors are treated as an outage of the tier
    return StoreUnavailable(f"{type(exc).__name__}: {exc}", tier=tier)
