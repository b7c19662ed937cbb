"""
app/schemas/verification.py
Verification and reconciliation result models.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from neurohub.app.schemas.profile import Profile

VerificationState = Literal["processing", "success", "error"]
VerificationFlow = Literal["native", "token"]
ReconciliationStatus = Literal["complete", "pending"]
TierOutcome = Literal["success", "failed", "skipped"]


class FallbackTokenClaims(BaseModel):
    uid: str
    email: str
    expires: int = Field(..., description="Expiry as epoch milliseconds")


class TierAttempt(BaseModel):
    tier: str
    outcome: TierOutcome
    error: Optional[str] = None
    message: Optional[str] = None


class ReconciliationResult(BaseModel):
    uid: str
    status: ReconciliationStatus
    profile: Optional[Profile] = None
    tier: Optional[str] = Field(None, description="Tier that produced the profile of record")
    attempts: List[TierAttempt] = Field(default_factory=list)
    retryAllowed: bool = False
    warning: Optional[str] = None


class VerificationOutcome(BaseModel):
    state: VerificationState
    flow: Optional[VerificationFlow] = None
    uid: Optional[str] = None
    email: Optional[str] = None
    reconciliation: Optional[ReconciliationResult] = None
    warning: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None


class VerificationEmailResponse(BaseModel):
    uid: str
    status: Literal["already_verified", "sent", "link_generated"]
    verification_link: Optional[str] = None
    fallback_link: Optional[str] = None


class RegisterResponse(BaseModel):
    user_id: str
    email: str
    pending_verification: bool = True
    verification: Optional[VerificationEmailResponse] = None
