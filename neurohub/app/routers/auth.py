"""
# app/routers/auth.py — Registration & Email Verification

## Overview
Account creation and the landing endpoint of the verification email. Firebase
Authentication owns the identity; the profile is written only after the email is
verified (see `app/services/reconciliation.py`).

---

## Endpoints

### POST /auth/register
Purpose: create the account and send the verification email.

Parameters (Form-Data):
- firstName, lastName (min. 1 character)
- email
- password (min. 6 characters)
- mobile (optional)

Flow:
1. The Firebase user is created (an existing account with the same email is reused).
2. The form data is kept as a pending registration until the email is verified.
3. The verification email is sent; a mail failure does not fail the registration.

---

### GET /auth/email-verified
Purpose: the link in the verification email lands here.

Query:
- `mode=verifyEmail&oobCode=...` (Firebase action link), or
- `token=...` (fallback link)

Responses:
- 200 `VerificationOutcome`; `warning` is set when the profile could not be written yet.
- 400 expired / malformed / missing verification parameter
- 404 no matching account
- 502 identity provider failure

Error body: `{"detail": {"state": "error", "code": "...", "message": "..."}}`
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request, status
from pydantic import EmailStr

from neurohub.app.core.deps import Services, get_services
from neurohub.app.core.errors import (
    ExpiredToken,
    IdentityNotFound,
    MalformedToken,
    MissingVerificationParameter,
    StoreError,
    VerificationError,
)
from neurohub.app.repositories.local_store import capture_registration
from neurohub.app.schemas.verification import RegisterResponse, VerificationOutcome
from neurohub.app.services.verification import send_verification_email

router = APIRouter(prefix="/auth", tags=["Auth"])

_STATUS_BY_ERROR = {
    ExpiredToken: status.HTTP_400_BAD_REQUEST,
    MalformedToken: status.HTTP_400_BAD_REQUEST,
    MissingVerificationParameter: status.HTTP_400_BAD_REQUEST,
    IdentityNotFound: status.HTTP_404_NOT_FOUND,
}


def verification_http_error(exc: VerificationError) -> HTTPException:
    """Identity provider failures (and anything unmapped) are 502."""
    code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_502_BAD_GATEWAY)
    return HTTPException(
        status_code=code,
        detail={"state": "error", "code": exc.code, "message": exc.message},
    )


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register and send the verification email",
)
async def register(
    firstName: str = Form(..., min_length=1, description="First name"),
    lastName: str = Form(..., min_length=1, description="Last name"),
    email: EmailStr = Form(..., description="Email"),
    password: str = Form(..., min_length=6, description="Password (min 6 characters)"),
    mobile: Optional[str] = Form(None, description="Mobile (optional)"),
    services: Services = Depends(get_services),
):
    provider = services.identity_provider
    display_name = f"{firstName.strip()} {lastName.strip()}"
    try:
        identity = await provider.create_identity(email, password, display_name)
    except VerificationError as exc:
        raise HTTPException(400, f"Firebase user creation failed: {exc.message}")

    if identity.email and identity.email.lower() != email.lower():
        raise HTTPException(400, "Firebase UID does not match the email")

    try:
        services.pending_registrations.save(
            capture_registration(identity.uid, identity.email or email, firstName.strip(),
                                 lastName.strip(), mobile)
        )
    except StoreError as exc:
        # the profile falls back to names derived from the identity
        logging.warning("Could not keep pending registration for %s: %s", identity.uid, exc.message)

    verification = None
    try:
        verification = await send_verification_email(provider, identity.uid, services.settings)
    except VerificationError as exc:
        logging.warning("Verification email for %s not sent: %s", identity.uid, exc.message)
    except (OSError, RuntimeError) as e:
        # SMTP failures
        logging.warning("Verification email error for %s: %s", identity.uid, e)

    return RegisterResponse(
        user_id=identity.uid,
        email=identity.email or email,
        pending_verification=not identity.emailVerified,
        verification=verification,
    )


@router.get(
    "/email-verified",
    response_model=VerificationOutcome,
    summary="Complete email verification and set up the profile",
)
async def email_verified(request: Request, services: Services = Depends(get_services)):
    try:
        return await services.receiver.receive(dict(request.query_params))
    except VerificationError as exc:
        raise verification_http_error(exc)
