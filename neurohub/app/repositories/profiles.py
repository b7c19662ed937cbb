# app/repositories/profiles.py
"""
Profile storage backends.

Every tier implements the same contract:
  - upsert(uid, fields) -> Profile   (raises StoreError)
  - get(uid) -> Profile | None       (raises StoreError)

Upserts are idempotent: an existing record is merged and keeps its createdAt,
so a repeated write never produces a second profile for a uid.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Callable, Dict, Optional

from google.api_core import exceptions as gexc
from pydantic import ValidationError

from neurohub.app.repositories.errors import classify_store_exception
from neurohub.app.schemas.profile import (
    Profile,
    ProfileFields,
    derive_first_name,
    email_local_part,
    merge_profile,
    utc_now,
)

USERS_COLLECTION = "users"
PROBE_COLLECTION = "connection_test"

_STORE_EXCEPTIONS = (gexc.GoogleAPIError, ConnectionError, TimeoutError, OSError,
                     ValidationError, ValueError, TypeError)


class ProfileBackend(ABC):
    name: str = "backend"
    # remote tiers are skipped while the network monitor reports offline
    remote: bool = True

    @abstractmethod
    async def upsert(self, uid: str, fields: ProfileFields) -> Profile:
        ...

    @abstractmethod
    async def get(self, uid: str) -> Optional[Profile]:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


def _to_dt(ts):
    if ts is None:
        return None
    try:
        return ts.to_datetime()
    except AttributeError:
        return ts


def profile_from_document(uid: str, data: Dict[str, Any]) -> Profile:
    data = dict(data or {})
    data["uid"] = uid
    for key in ("createdAt", "updatedAt"):
        if data.get(key) is None:
            data.pop(key, None)
        else:
            data[key] = _to_dt(data[key])
    if not data.get("username"):
        data["username"] = email_local_part(data.get("email"))
    # legacy documents carry isAdmin instead of role
    if "role" not in data and data.pop("isAdmin", False):
        data["role"] = "doctor"
    known = set(Profile.model_fields)
    return Profile(**{k: v for k, v in data.items() if k in known})


class FirestoreProfileBackend(ProfileBackend):
    """Direct writes to `users/{uid}` through the Admin SDK."""
    name = "firestore"

    def __init__(self, db, collection: str = USERS_COLLECTION):
        self.db = db
        self.collection = collection

    def _ref(self, uid: str):
        return self.db.collection(self.collection).document(uid)

    async def _run(self, fn: Callable, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(fn, *args))
        except _STORE_EXCEPTIONS as exc:
            raise classify_store_exception(exc, tier=self.name) from exc

    def _get_blocking(self, uid: str) -> Optional[Profile]:
        snap = self._ref(uid).get()
        if not snap.exists:
            return None
        return profile_from_document(uid, snap.to_dict())

    def _payload(self, uid: str, fields: ProfileFields) -> ProfileFields:
        return fields

    def _upsert_blocking(self, uid: str, fields: ProfileFields) -> Profile:
        ref = self._ref(uid)
        snap = ref.get()
        existing = profile_from_document(uid, snap.to_dict()) if snap.exists else None
        profile = merge_profile(existing, uid, self._payload(uid, fields))
        ref.set(profile.to_document(), merge=True)
        return profile

    async def get(self, uid: str) -> Optional[Profile]:
        return await self._run(self._get_blocking, uid)

    async def upsert(self, uid: str, fields: ProfileFields) -> Profile:
        return await self._run(self._upsert_blocking, uid, fields)

    def _ping_blocking(self) -> None:
        self.db.collection(PROBE_COLLECTION).document("probe").set({
            "timestamp": utc_now(),
            "message": "Connection test",
        })

    async def ping(self) -> None:
        """A real write against the remote store; raises StoreError when it fails."""
        await self._run(self._ping_blocking)


class MinimalFirestoreBackend(FirestoreProfileBackend):
    """
    Last-resort tier: writes only the identity and derived name fields.
    Fields it cannot vouch for (lastName, username, an unresolved role) keep
    their stored value and fall back to the create defaults on a new record.
    Allowlisted emails are always written as admins.
    """
    name = "firestore-minimal"

    def __init__(self, db, resolver, collection: str = USERS_COLLECTION):
        super().__init__(db, collection)
        self.resolver = resolver

    def _payload(self, uid: str, fields: ProfileFields) -> ProfileFields:
        role = fields.role
        if self.resolver.is_privileged(fields.email):
            role = self.resolver.resolve(fields.email)
        return ProfileFields(
            email=fields.email,
            firstName=derive_first_name(fields.email, fields.firstName),
            role=role,
        )
