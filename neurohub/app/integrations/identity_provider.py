# app/integrations/identity_provider.py
"""
Firebase Authentication as the identity provider.

- apply_action_code: Identity Toolkit REST `accounts:update` with the oobCode
  (the same call the client SDK's applyActionCode makes); flips emailVerified.
- get_identity / mark_email_verified / create_identity / generate_verification_link:
  Admin SDK calls, run in the default executor because they block.
"""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Callable, Optional

import httpx
from firebase_admin import auth as firebase_auth
from firebase_admin.exceptions import FirebaseError

from neurohub.app.core.errors import (
    ExpiredToken,
    IdentityNotFound,
    IdentityProviderError,
    MalformedToken,
)
from neurohub.app.core.firebase import init_firebase, refresh_credentials
from neurohub.app.schemas.profile import Identity

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

_EXPIRED_CODES = {"EXPIRED_OOB_CODE"}
_INVALID_CODES = {"INVALID_OOB_CODE", "MISSING_OOB_CODE"}
_NOT_FOUND_CODES = {"USER_NOT_FOUND", "USER_DISABLED", "EMAIL_NOT_FOUND"}


def _identity_from_record(record) -> Identity:
    return Identity(
        uid=record.uid,
        email=record.email or "",
        emailVerified=bool(record.email_verified),
        displayName=record.display_name,
    )


def _error_code(resp: httpx.Response) -> str:
    try:
        message = resp.json().get("error", {}).get("message", "")
    except ValueError:
        return ""
    # e.g. "INVALID_OOB_CODE : The action code is invalid."
    return message.split(":")[0].strip()


class FirebaseIdentityProvider:
    def __init__(self, web_api_key: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.web_api_key = web_api_key
        self.timeout = timeout
        self.transport = transport

    async def _admin(self, fn: Callable, *args, **kwargs):
        init_firebase()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    async def apply_action_code(self, oob_code: str) -> Identity:
        if not self.web_api_key:
            raise IdentityProviderError("Server misconfigured: missing FIREBASE_WEB_API_KEY")
        url = f"{IDENTITY_TOOLKIT_URL}/accounts:update?key={self.web_api_key}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(url, json={"oobCode": oob_code})
        except httpx.HTTPError as e:
            logging.exception("accounts:update failed")
            raise IdentityProviderError(f"Identity provider unreachable: {e}") from e

        if r.status_code != 200:
            code = _error_code(r)
            logging.warning("accounts:update response: %s %s", r.status_code, code or r.text)
            if code in _EXPIRED_CODES:
                raise ExpiredToken("The verification link has expired")
            if code in _INVALID_CODES:
                raise MalformedToken("The verification link is invalid or has already been used")
            if code in _NOT_FOUND_CODES:
                raise IdentityNotFound("No account matches this verification link")
            raise IdentityProviderError(f"Identity provider rejected the action code: {code or r.status_code}")

        data = r.json()
        email = data.get("email")
        uid = data.get("localId")
        if not email:
            raise IdentityProviderError("Identity provider response carried no email")
        if not uid:
            # accounts:update does not always echo the uid back
            return (await self.get_identity_by_email(email)).model_copy(update={"emailVerified": True})
        return Identity(
            uid=uid,
            email=email,
            emailVerified=bool(data.get("emailVerified", True)),
            displayName=data.get("displayName"),
        )

    async def get_identity(self, uid: str) -> Identity:
        try:
            record = await self._admin(firebase_auth.get_user, uid)
        except firebase_auth.UserNotFoundError as e:
            raise IdentityNotFound(f"No identity for uid {uid}") from e
        except (ValueError, FirebaseError) as e:
            raise IdentityProviderError(f"Identity lookup failed: {e}") from e
        return _identity_from_record(record)

    async def get_identity_by_email(self, email: str) -> Identity:
        try:
            record = await self._admin(firebase_auth.get_user_by_email, email)
        except firebase_auth.UserNotFoundError as e:
            raise IdentityNotFound(f"No identity for {email}") from e
        except (ValueError, FirebaseError) as e:
            raise IdentityProviderError(f"Identity lookup failed: {e}") from e
        return _identity_from_record(record)

    async def mark_email_verified(self, uid: str) -> Identity:
        try:
            record = await self._admin(firebase_auth.update_user, uid, email_verified=True)
        except firebase_auth.UserNotFoundError as e:
            raise IdentityNotFound(f"No identity for uid {uid}") from e
        except (ValueError, FirebaseError) as e:
            raise IdentityProviderError(f"Could not mark email verified: {e}") from e
        return _identity_from_record(record)

    async def create_identity(self, email: str, password: str, display_name: str) -> Identity:
        try:
            record = await self._admin(
                firebase_auth.create_user, email=email, password=password, display_name=display_name
            )
        except firebase_auth.EmailAlreadyExistsError:
            # If the account already exists, reuse its uid
            return await self.get_identity_by_email(email)
        except (ValueError, FirebaseError) as e:
            raise IdentityProviderError(f"Firebase user creation failed: {e}") from e
        return _identity_from_record(record)

    async def generate_verification_link(self, email: str, continue_url: Optional[str] = None) -> str:
        action_settings = (
            firebase_auth.ActionCodeSettings(url=continue_url, handle_code_in_app=False)
            if continue_url else None
        )
        try:
            return await self._admin(
                firebase_auth.generate_email_verification_link, email, action_settings
            )
        except firebase_auth.UserNotFoundError as e:
            raise IdentityNotFound(f"No identity for {email}") from e
        except (ValueError, FirebaseError) as e:
            raise IdentityProviderError(f"Could not generate verification link: {e}") from e

    async def refresh_credentials(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, refresh_credentials)
