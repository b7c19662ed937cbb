"""
# `app/core/security.py` — Access guards

Role based guards layered on top of `app/core/auth.py`. Use them with `Depends(...)`.

---

## `require_non_guest`
Rejects anonymous sign-ins (`role="guest"`) with `403`.

## `require_identity_access(uid)`
Guards the per-identity endpoints (`/identities/{uid}/...`). A request is allowed when
- it carries `X-Service-Key` equal to `SERVICE_API_KEY` (server-to-server calls), or
- the bearer principal **is** `uid`, or
- the bearer principal is elevated (doctor/admin).

Otherwise `401` (no credentials) or `403` (someone else's identity).
"""
import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from neurohub.app.core.auth import get_optional_principal, get_principal
from neurohub.app.core.deps import Services, get_services
from neurohub.app.core.roles import is_elevated
from neurohub.app.integrations.profile_api import SERVICE_KEY_HEADER
from neurohub.app.schemas.principal import Principal


def require_non_guest(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role == "guest":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Guest users are not allowed for this action."
        )
    return principal


def _valid_service_key(presented: Optional[str], expected: Optional[str]) -> bool:
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


async def require_identity_access(
    uid: str,
    request: Request,
    service_key: Optional[str] = Header(None, alias=SERVICE_KEY_HEADER),
    services: Services = Depends(get_services),
) -> Optional[Principal]:
    """Returns the principal, or None for a trusted service caller."""
    if _valid_service_key(service_key, services.settings.service_api_key):
        return None

    principal = await get_optional_principal(request, services)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials were not provided",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if principal.uid != uid and not is_elevated(principal.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to act on this identity."
        )
    return principal
