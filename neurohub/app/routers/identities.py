"""
# app/routers/identities.py — Profile API

Server-mediated access to `users/{uid}`. This is the first tier of the
reconciliation cascade (`ApiProfileBackend` calls it) and is also used by trusted
services. Every endpoint is guarded by `require_identity_access`: the identity itself,
a doctor/admin, or a caller presenting `X-Service-Key`.

| Method | Path                                   | Result                               |
|--------|----------------------------------------|--------------------------------------|
| POST   | `/identities/{uid}/profile`            | 201 created / 200 merged, `Profile`  |
| GET    | `/identities/{uid}/profile`            | `Profile`, 404 when missing          |
| POST   | `/identities/{uid}/verification-email` | `VerificationEmailResponse`          |

The role is never taken from the request body; it is resolved here.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status

from neurohub.app.core.deps import Services, get_services
from neurohub.app.core.errors import StoreError, StoreErrorKind, VerificationError
from neurohub.app.core.security import require_identity_access
from neurohub.app.routers.auth import verification_http_error
from neurohub.app.schemas.principal import Principal
from neurohub.app.schemas.profile import Profile, ProfileFields, ProfileUpsertRequest
from neurohub.app.schemas.verification import VerificationEmailResponse
from neurohub.app.services.verification import send_verification_email

router = APIRouter(prefix="/identities", tags=["Identities"])


def _store_http_error(exc: StoreError) -> HTTPException:
    if exc.kind == StoreErrorKind.FATAL:
        return HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
    logging.warning("Profile store error (%s): %s", exc.tier, exc.message)
    return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Profile store unavailable")


@router.post("/{uid}/profile", response_model=Profile, summary="Create or merge a profile")
async def upsert_profile(
    uid: str,
    body: ProfileUpsertRequest,
    response: Response,
    principal: Optional[Principal] = Depends(require_identity_access),
    services: Services = Depends(get_services),
):
    if (principal is not None and principal.uid == uid and principal.email
            and principal.email.lower() != body.email.lower()):
        raise HTTPException(400, "Email does not match the authenticated identity")

    role = await services.orchestrator.resolve_role(body.email)
    fields = ProfileFields(**body.model_dump(), role=role)
    try:
        existing = await services.firestore.get(uid)
        profile = await services.firestore.upsert(uid, fields)
    except StoreError as exc:
        raise _store_http_error(exc)

    response.status_code = status.HTTP_200_OK if existing is not None else status.HTTP_201_CREATED
    return profile


@router.get("/{uid}/profile", response_model=Profile)
async def get_profile(
    uid: str,
    _: Optional[Principal] = Depends(require_identity_access),
    services: Services = Depends(get_services),
):
    try:
        profile = await services.firestore.get(uid)
    except StoreError as exc:
        raise _store_http_error(exc)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.post("/{uid}/verification-email", response_model=VerificationEmailResponse)
async def resend_verification_email(
    uid: str,
    _: Optional[Principal] = Depends(require_identity_access),
    services: Services = Depends(get_services),
):
    try:
        return await send_verification_email(services.identity_provider, uid, services.settings)
    except VerificationError as exc:
        raise verification_http_error(exc)
    except (OSError, RuntimeError) as e:
        logging.exception("Verification email failed for %s", uid)
        raise HTTPException(status_code=502, detail=f"Email service error: {e}")
