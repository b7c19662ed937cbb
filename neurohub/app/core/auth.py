# app/core/auth.py
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from firebase_admin import auth as fb_auth

from neurohub.app.core.deps import Services, get_services
from neurohub.app.core.firebase import init_firebase
from neurohub.app.core.roles import RoleLookup, RoleResolver
from neurohub.app.schemas.principal import Principal

MOCK_TOKEN_PREFIX = "mock_jwt_token_"


def _extract_bearer_token(request: Request) -> Optional[str]:
    """
    Reads the token from `Authorization: Bearer <id_token>`.
    Returns None when the header is missing.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_id_token(id_token: str, debug: bool) -> dict:
    """
    Firebase ID token verification (with revocation check).
    Mock tokens are accepted only when DEBUG is on.
    """
    if debug and id_token.startswith(MOCK_TOKEN_PREFIX):
        return _decode_mock_token(id_token)

    try:
        init_firebase()
        return fb_auth.verify_id_token(id_token, check_revoked=True)
    except fb_auth.ExpiredIdTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except fb_auth.RevokedIdTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session revoked")
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid Firebase ID token: {exc}"
        )


def _decode_mock_token(mock_token: str) -> dict:
    """
    Format: mock_jwt_token_<uid>[:<email>]
    e.g. mock_jwt_token_anonymous_1234567890 or mock_jwt_token_u1:jane@example.com
    """
    body = mock_token[len(MOCK_TOKEN_PREFIX):]
    uid, _, email = body.partition(":")
    if not uid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid mock token format")
    return {
        "uid": uid,
        "email": email or None,
        "email_verified": bool(email),
        "name": None,
        "firebase": {
            "sign_in_provider": "anonymous" if "anonymous" in uid else "password"
        },
    }


def _token_to_principal(decoded: dict, resolver: RoleResolver) -> Principal:
    """
    - anonymous provider        -> 'guest'
    - custom claim admin=True   -> 'admin'
    - everything else goes through the role resolver
      (allowlist, then the `role: doctor` claim)
    """
    uid = decoded.get("uid") or decoded.get("user_id")
    if not uid:
        raise HTTPException(status_code=401, detail="Token missing uid.")

    firebase_info = decoded.get("firebase") or {}
    provider = firebase_info.get("sign_in_provider")
    email = decoded.get("email")

    if provider == "anonymous":
        role = "guest"
    elif decoded.get("admin") is True:
        role = "admin"
    else:
        role = resolver.resolve(email, RoleLookup(doctor=decoded.get("role") == "doctor"))

    return Principal(
        uid=uid,
        role=role,
        email=email,
        email_verified=bool(decoded.get("email_verified")),
        display_name=decoded.get("name"),
    )

# --------- FastAPI Dependencies --------- #

async def get_optional_principal(
    request: Request, services: Services = Depends(get_services)
) -> Optional[Principal]:
    """
    Token optional: verified when present, otherwise None.
    """
    token = _extract_bearer_token(request)
    if not token:
        return None
    decoded = _decode_id_token(token, services.settings.debug)
    return _token_to_principal(decoded, services.resolver)


async def get_principal(
    request: Request, services: Services = Depends(get_services)
) -> Principal:
    """
    Token required: verifies it and returns the Principal (guest/user/doctor/admin).
    """
    token = _extract_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing Authorization header.")
    decoded = _decode_id_token(token, services.settings.debug)
    return _token_to_principal(decoded, services.resolver)
