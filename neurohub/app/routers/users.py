"""
# `app/routers/users.py` — Current user's profile

### `GET /users/me`
Returns the caller's profile.

1. The remote profile store is read first (source of truth).
2. While it is unreachable the cached copy is served: privileged accounts get the
   session snapshot, everyone else the local cache.
3. `404` when no tier knows the user (e.g. email not verified yet).
"""
from fastapi import APIRouter, Depends, HTTPException

from neurohub.app.core.deps import Services, get_services
from neurohub.app.core.security import require_non_guest
from neurohub.app.schemas.principal import Principal
from neurohub.app.schemas.profile import Profile

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=Profile)
async def get_my_profile(
    principal: Principal = Depends(require_non_guest),
    services: Services = Depends(get_services),
):
    profile = await services.orchestrator.load_profile(principal.uid, principal.email)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile
