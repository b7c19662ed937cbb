# app/integrations/profile_api.py
"""
Server-mediated profile tier.

Talks to `POST/GET /identities/{uid}/profile` over HTTP; the API in turn writes
Firestore. Any non-2xx answer or transport error is a tier failure:
  - 401/403               -> PermissionDenied
  - 400/404/409/422       -> StoreValidationError (fatal)
  - 5xx, timeouts, others -> StoreUnavailable
"""
from __future__ import annotations

from typing import Optional

import httpx
from pydantic import ValidationError

from neurohub.app.core.errors import (
    PermissionDenied,
    StoreError,
    StoreUnavailable,
    StoreValidationError,
)
from neurohub.app.repositories.profiles import ProfileBackend
from neurohub.app.schemas.profile import Profile, ProfileFields, merge_profile

SERVICE_KEY_HEADER = "X-Service-Key"


class ApiProfileBackend(ProfileBackend):
    name = "profile-api"

    def __init__(self, base_url: str, service_key: Optional[str] = None, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.service_key:
            headers[SERVICE_KEY_HEADER] = self.service_key
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                 headers=headers, transport=self.transport)

    def _error(self, resp: httpx.Response) -> StoreError:
        msg = f"{resp.request.method} {resp.request.url.path} -> {resp.status_code}: {resp.text[:200]}"
        if resp.status_code in (401, 403):
            return PermissionDenied(msg, tier=self.name)
        if resp.status_code in (400, 404, 409, 422):
            return StoreValidationError(msg, tier=self.name)
        return StoreUnavailable(msg, tier=self.name)

    def _parse(self, resp: httpx.Response) -> Profile:
        try:
            return Profile(**resp.json())
        except (ValueError, TypeError, ValidationError) as exc:
            raise StoreValidationError(f"Unexpected profile payload: {exc}", tier=self.name) from exc

    async def upsert(self, uid: str, fields: ProfileFields) -> Profile:
        # role is resolved server-side, the API does not accept it
        body = fields.model_dump(exclude_none=True, exclude={"role"})
        try:
            async with self._client() as client:
                resp = await client.post(f"/identities/{uid}/profile", json=body)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"Profile API unreachable: {exc}", tier=self.name) from exc
        if not resp.is_success:
            raise self._error(resp)
        if not resp.content:
            # accepted without a body (204): read the record back
            return await self.get(uid) or merge_profile(None, uid, fields)
        return self._parse(resp)

    async def get(self, uid: str) -> Optional[Profile]:
        try:
            async with self._client() as client:
                resp = await client.get(f"/identities/{uid}/profile")
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"Profile API unreachable: {exc}", tier=self.name) from exc
        if resp.status_code == 404:
            return None
        if not resp.is_success:
            raise self._error(resp)
        return self._parse(resp)
