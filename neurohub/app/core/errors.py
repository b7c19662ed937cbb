# app/core/errors.py
"""
Exception taxonomy for verification and profile storage.

Verification errors stop the verification flow and are shown to the user.
Store errors stay inside the reconciliation cascade: they only decide whether
the next tier is tried and how loudly the failure is logged.
"""
from __future__ import annotations

from enum import Enum
from typing import List, Optional


class VerificationError(Exception):
    code = "VERIFICATION_FAILED"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class ExpiredToken(VerificationError):
    code = "EXPIRED_TOKEN"


class MalformedToken(VerificationError):
    code = "MALFORMED_TOKEN"


class MissingVerificationParameter(VerificationError):
    code = "MISSING_VERIFICATION_PARAMETER"


class IdentityNotFound(VerificationError):
    code = "IDENTITY_NOT_FOUND"


class IdentityProviderError(VerificationError):
    """The identity provider could not be reached or answered unexpectedly."""
    code = "IDENTITY_PROVIDER_ERROR"


class StoreErrorKind(str, Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


class StoreError(Exception):
    kind = StoreErrorKind.TRANSIENT
    code = "STORE_ERROR"

    def __init__(self, message: str, tier: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tier = tier

    @property
    def is_transient(self) -> bool:
        return self.kind == StoreErrorKind.TRANSIENT


class StoreUnavailable(StoreError):
    code = "STORE_UNAVAILABLE"


class PermissionDenied(StoreError):
    """Transient for the cascade, but usually a rules or credential misconfiguration."""
    code = "PERMISSION_DENIED"


class StoreValidationError(StoreError):
    kind = StoreErrorKind.FATAL
    code = "STORE_VALIDATION_ERROR"


class AllTiersExhausted(Exception):
    code = "ALL_TIERS_EXHAUSTED"

    def __init__(self, uid: str, errors: List[StoreError]):
        tiers = ", ".join(f"{e.tier}={e.code}" for e in errors) or "none attempted"
        super().__init__(f"No profile tier accepted the write for {uid} ({tiers})")
        self.uid = uid
        self.errors = errors
