# app/repositories/local_store.py
"""
Non-authoritative profile tiers.

LocalJsonStore is a small persistent key/value file (one JSON string per key).
On top of it:
  - LocalProfileBackend keeps two blobs, a uid -> profile map and a privileged
    subset that is read first.
  - PendingRegistrationStore keeps registration data captured before verification.
  - ConsumedTokenStore remembers redeemed fallback tokens until they expire.
SessionProfileBackend holds at most one privileged profile in memory.

Writes are read-modify-write without transactions: the last writer wins.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from neurohub.app.core.errors import StoreUnavailable, StoreValidationError
from neurohub.app.core.roles import RoleResolver, normalize_email
from neurohub.app.repositories.profiles import ProfileBackend
from neurohub.app.schemas.profile import (
    PendingRegistration,
    Profile,
    ProfileFields,
    merge_profile,
    utc_now,
)

LOCAL_USERS_KEY = "neurohub_local_users"
LOCAL_SUPER_ADMINS_KEY = "neurohub_local_super_admins"
PENDING_REGISTRATIONS_KEY = "neurohub_pending_registrations"
CONSUMED_TOKENS_KEY = "neurohub_consumed_tokens"
SESSION_ADMIN_KEY = "neurohub_session_admin"


class LocalJsonStore:
    """Persistent string key/value store backed by a single JSON file."""

    def __init__(self, path: str):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise StoreValidationError(f"Corrupt local store {self.path}: {exc}", tier="local") from exc
        except OSError as exc:
            raise StoreUnavailable(f"Cannot read local store {self.path}: {exc}", tier="local") from exc
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, str]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot write local store {self.path}: {exc}", tier="local") from exc

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    # JSON blob helpers
    def get_map(self, key: str) -> Dict[str, Any]:
        raw = self.get_item(key)
        if not raw:
            return {}
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreValidationError(f"Corrupt blob {key}: {exc}", tier="local") from exc
        return value if isinstance(value, dict) else {}

    def set_map(self, key: str, value: Dict[str, Any]) -> None:
        self.set_item(key, json.dumps(value))


def _parse_profile(raw: dict, tier: str) -> Profile:
    try:
        return Profile(**raw)
    except ValidationError as exc:
        raise StoreValidationError(f"Invalid cached profile: {exc}", tier=tier) from exc


class LocalProfileBackend(ProfileBackend):
    name = "local"
    remote = False

    def __init__(self, store: LocalJsonStore, resolver: RoleResolver):
        self.store = store
        self.resolver = resolver

    def _write(self, profile: Profile) -> None:
        users = self.store.get_map(LOCAL_USERS_KEY)
        users[profile.uid] = profile.to_json_dict()
        self.store.set_map(LOCAL_USERS_KEY, users)

        if self.resolver.is_privileged(profile.email):
            admins = self.store.get_map(LOCAL_SUPER_ADMINS_KEY)
            admins[profile.uid] = profile.model_copy(update={"role": "admin"}).to_json_dict()
            self.store.set_map(LOCAL_SUPER_ADMINS_KEY, admins)

    async def get(self, uid: str) -> Optional[Profile]:
        admins = self.store.get_map(LOCAL_SUPER_ADMINS_KEY)
        if uid in admins:
            return _parse_profile(admins[uid], self.name)
        users = self.store.get_map(LOCAL_USERS_KEY)
        if uid in users:
            return _parse_profile(users[uid], self.name)
        return None

    async def upsert(self, uid: str, fields: ProfileFields) -> Profile:
        profile = merge_profile(await self.get(uid), uid, fields)
        self._write(profile)
        return profile

    async def put(self, profile: Profile) -> Profile:
        """Mirror a record produced by an authoritative tier as-is."""
        self._write(profile)
        return profile

    async def get_by_email(self, email: str) -> Optional[Profile]:
        wanted = normalize_email(email)
        for key in (LOCAL_SUPER_ADMINS_KEY, LOCAL_USERS_KEY):
            for raw in self.store.get_map(key).values():
                if normalize_email(raw.get("email")) == wanted:
                    return _parse_profile(raw, self.name)
        return None


class SessionProfileBackend(ProfileBackend):
    """
    Session snapshot of a privileged profile, used to answer reads before the
    remote tier responds. Never a write of record.
    """
    name = "session"
    remote = False

    def __init__(self, resolver: RoleResolver):
        self.resolver = resolver
        self._items: Dict[str, str] = {}

    def accepts(self, email: Optional[str]) -> bool:
        return self.resolver.is_privileged(email)

    def snapshot(self) -> Optional[Profile]:
        raw = self._items.get(SESSION_ADMIN_KEY)
        if not raw:
            return None
        profile = _parse_profile(json.loads(raw), self.name)
        # the allowlist may have changed since the snapshot was taken
        return profile if self.accepts(profile.email) else None

    async def get(self, uid: str) -> Optional[Profile]:
        profile = self.snapshot()
        return profile if profile is not None and profile.uid == uid else None

    async def put(self, profile: Profile) -> Profile:
        if not self.accepts(profile.email):
            raise StoreValidationError("Session cache only holds privileged profiles", tier=self.name)
        snapshot = profile.model_copy(update={"role": "admin"})
        self._items[SESSION_ADMIN_KEY] = json.dumps(snapshot.to_json_dict())
        return snapshot

    async def upsert(self, uid: str, fields: ProfileFields) -> Profile:
        return await self.put(merge_profile(await self.get(uid), uid, fields))

    def clear(self) -> None:
        self._items.clear()


class PendingRegistrationStore:
    def __init__(self, store: LocalJsonStore):
        self.store = store

    def save(self, pending: PendingRegistration) -> None:
        blob = self.store.get_map(PENDING_REGISTRATIONS_KEY)
        blob[pending.uid] = pending.model_dump(mode="json")
        self.store.set_map(PENDING_REGISTRATIONS_KEY, blob)

    def get(self, uid: str) -> Optional[PendingRegistration]:
        raw = self.store.get_map(PENDING_REGISTRATIONS_KEY).get(uid)
        if not raw:
            return None
        try:
            return PendingRegistration(**raw)
        except ValidationError:
            return None


def capture_registration(uid: str, email: str, first_name: str, last_name: str,
                         mobile: Optional[str] = None) -> PendingRegistration:
    return PendingRegistration(
        uid=uid,
        email=email,
        firstName=first_name,
        lastName=last_name,
        mobile=mobile or "",
        username=f"{first_name.lower()}{last_name.lower()}".replace(" ", ""),
        capturedAt=utc_now(),
    )


class ConsumedTokenStore:
    """
    Fallback verification tokens that were already redeemed. A token is keyed by
    uid and expiry, and the marker is dropped once the token would have expired anyway.
    """

    def __init__(self, store: LocalJsonStore):
        self.store = store

    @staticmethod
    def _key(uid: str, expires: int) -> str:
        return f"{uid}:{expires}"

    def is_consumed(self, uid: str, expires: int) -> bool:
        return self._key(uid, expires) in self.store.get_map(CONSUMED_TOKENS_KEY)

    def consume(self, uid: str, expires: int, now_ms: int) -> None:
        blob = {k: v for k, v in self.store.get_map(CONSUMED_TOKENS_KEY).items()
                if isinstance(v, int) and v >= now_ms}
        blob[self._key(uid, expires)] = expires
        self.store.set_map(CONSUMED_TOKENS_KEY, blob)
