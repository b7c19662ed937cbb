"""
# `app/schemas/profile.py` — Identity & Profile Schemas

## Overview
Pydantic models for the identity verification / profile reconciliation flow.
Field names are camelCase because the same JSON is stored in Firestore, in the
local cache blobs and sent over the profile API.

---

## `Identity`
Owned by Firebase Authentication; read-only here except `emailVerified`.
| Field         | Type           |
|---------------|----------------|
| uid           | `str`          |
| email         | `str`          |
| emailVerified | `bool`         |
| displayName   | `str` / `null` |

---

## `Profile`
The canonical application record (`users/{uid}`).
| Field     | Type                              |
|-----------|-----------------------------------|
| uid       | `str`                             |
| firstName | `str`                             |
| lastName  | `str`                             |
| email     | `str`                             |
| mobile    | `str` / `null`                    |
| username  | `str`                             |
| role      | `"user"` / `"doctor"` / `"admin"` |
| createdAt | `datetime`                        |
| updatedAt | `datetime`                        |

---

## `ProfileFields`
What a tier is asked to write. `None` means "keep the stored value".

---

## `PendingRegistration`
Registration form data captured before the email is verified.

---

## `ProfileUpsertRequest`
Body of `POST /identities/{uid}/profile`.
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from neurohub.app.schemas.principal import Role


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def email_local_part(email: Optional[str]) -> str:
    if not email:
        return "user"
    return email.split("@")[0] or "user"


def derive_first_name(email: Optional[str], display_name: Optional[str] = None) -> str:
    """First token of the display name, or the email local part."""
    if display_name and display_name.strip():
        return display_name.strip().split(" ")[0]
    return email_local_part(email)


def derive_last_name(display_name: Optional[str]) -> str:
    if display_name and display_name.strip():
        return " ".join(display_name.strip().split(" ")[1:])
    return ""


class Identity(BaseModel):
    uid: str
    email: str
    emailVerified: bool = False
    displayName: Optional[str] = None


class Profile(BaseModel):
    uid: str = Field(..., description="Firebase UID")
    firstName: str = Field("", description="First name")
    lastName: str = Field("", description="Last name")
    email: str = Field(..., description="Verified email address")
    mobile: Optional[str] = Field(None, description="Mobile phone")
    username: str = Field(..., description="Username")
    role: Role = Field("user", description="user | doctor | admin")
    createdAt: datetime = Field(default_factory=utc_now)
    updatedAt: datetime = Field(default_factory=utc_now)

    def to_document(self) -> dict:
        """Firestore document payload (datetimes stay datetimes)."""
        return self.model_dump()

    def to_json_dict(self) -> dict:
        """JSON-safe payload for the local/session caches."""
        return self.model_dump(mode="json")


class ProfileFields(BaseModel):
    email: str
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    mobile: Optional[str] = None
    username: Optional[str] = None
    role: Optional[Role] = None

    def written(self) -> dict:
        return self.model_dump(exclude_none=True)


class PendingRegistration(BaseModel):
    uid: str
    email: Optional[str] = None
    firstName: str
    lastName: str
    mobile: str = ""
    username: str
    capturedAt: datetime = Field(default_factory=utc_now)


class ProfileUpsertRequest(BaseModel):
    email: str = Field(..., description="Verified email of the identity")
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    mobile: Optional[str] = None
    username: Optional[str] = None


def merge_profile(existing: Optional[Profile], uid: str, fields: ProfileFields,
                  now: Optional[datetime] = None) -> Profile:
    """
    Create-or-merge rule shared by every storage tier.
    An existing record keeps its uid and createdAt; supplied fields win,
    omitted fields keep the stored value.
    """
    now = now or utc_now()
    if existing is None:
        data = {
            "uid": uid,
            "firstName": derive_first_name(fields.email),
            "lastName": "",
            "username": email_local_part(fields.email),
            "role": "user",
            "createdAt": now,
        }
    else:
        data = existing.model_dump()
    data.update(fields.written())
    data["uid"] = uid
    data["updatedAt"] = now
    return Profile(**data)
