# app/core/roles.py
"""
Role resolution.

Every role decision goes through `RoleResolver.resolve`, highest precedence first:

1. email in the privileged allowlist  -> "admin" (no I/O, works with every store down)
2. a record in the `doctors` collection -> "doctor"
3. a record in the `users` collection   -> "user"
4. nothing found                        -> "user"
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable, Optional

from google.api_core import exceptions as gexc
from google.cloud.firestore_v1.base_query import FieldFilter

from neurohub.app.repositories.errors import classify_store_exception
from neurohub.app.schemas.principal import Role

DOCTORS_COLLECTION = "doctors"
USERS_COLLECTION = "users"

ELEVATED_ROLES = frozenset({"doctor", "admin"})


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_elevated(role: Optional[str]) -> bool:
    """Doctors count as admin-equivalent for authorization."""
    return role in ELEVATED_ROLES


@dataclass(frozen=True)
class RoleLookup:
    """What the stores know about an email."""
    doctor: bool = False
    user: bool = False


class RoleResolver:
    def __init__(self, privileged_emails: Iterable[str] = ()):
        self._privileged = frozenset(normalize_email(e) for e in privileged_emails if e)

    def is_privileged(self, email: Optional[str]) -> bool:
        return bool(email) and normalize_email(email) in self._privileged

    def resolve(self, email: Optional[str], lookup: Optional[RoleLookup] = None) -> Role:
        if self.is_privileged(email):
            return "admin"
        if lookup is not None and lookup.doctor:
            return "doctor"
        return "user"


def _exists_by_email(db, collection: str, email: str) -> bool:
    q = db.collection(collection).where(filter=FieldFilter("email", "==", email)).limit(1)
    for _ in q.stream():
        return True
    return False


def _lookup_blocking(db, email: str) -> RoleLookup:
    return RoleLookup(
        doctor=_exists_by_email(db, DOCTORS_COLLECTION, email),
        user=_exists_by_email(db, USERS_COLLECTION, email),
    )


async def lookup_roles(db, email: str) -> RoleLookup:
    """
    Query the doctor and user collections for `email`.
    Raises StoreError when the remote store cannot answer.
    """
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, _lookup_blocking, db, email)
    except (gexc.GoogleAPIError, ConnectionError, TimeoutError, OSError) as exc:
        raise classify_store_exception(exc, tier="role-lookup") from exc
