from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from google.api_core import exceptions as gexc

from neurohub.app.core.errors import PermissionDenied, StoreUnavailable, StoreValidationError
from neurohub.app.core.roles import RoleResolver
from neurohub.app.repositories.errors import classify_store_exception
from neurohub.app.repositories.profiles import (
    FirestoreProfileBackend,
    MinimalFirestoreBackend,
    profile_from_document,
)
from neurohub.app.schemas.profile import ProfileFields, merge_profile


def test_merge_profile_creates_with_defaults():
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    profile = merge_profile(None, "u1", ProfileFields(email="pat@example.com"), now=now)

    assert profile.firstName == "pat"
    assert profile.lastName == ""
    assert profile.username == "pat"
    assert profile.role == "user"
    assert profile.createdAt == now == profile.updatedAt


def test_merge_profile_keeps_created_at_and_unwritten_fields():
    first = datetime(2025, 1, 1, tzinfo=timezone.utc)
    later = first + timedelta(hours=1)
    existing = merge_profile(None, "u1", ProfileFields(email="pat@example.com", mobile="555"), now=first)

    merged = merge_profile(existing, "u1", ProfileFields(email="pat@example.com", firstName="Pat"), now=later)

    assert merged.createdAt == first
    assert merged.updatedAt == later
    assert merged.firstName == "Pat"
    assert merged.mobile == "555"


def test_firestore_upsert_is_idempotent(fake_db):
    backend = FirestoreProfileBackend(fake_db)

    first = asyncio.run(backend.upsert("u1", ProfileFields(email="pat@example.com", firstName="Pat")))
    second = asyncio.run(backend.upsert("u1", ProfileFields(email="pat@example.com", firstName="Patricia")))

    assert list(fake_db.data["users"]) == ["u1"]
    assert second.createdAt == first.createdAt
    assert second.firstName == "Patricia"
    stored = asyncio.run(backend.get("u1"))
    assert stored.firstName == "Patricia"
    assert stored.createdAt == first.createdAt


def test_firestore_get_missing_returns_none(fake_db):
    assert asyncio.run(FirestoreProfileBackend(fake_db).get("nobody")) is None


@pytest.mark.parametrize(
    "exc, expected",
    [
        (gexc.ServiceUnavailable("down"), StoreUnavailable),
        (gexc.DeadlineExceeded("slow"), StoreUnavailable),
        (gexc.PermissionDenied("rules"), PermissionDenied),
        (gexc.InvalidArgument("bad"), StoreValidationError),
    ],
)
def test_firestore_errors_are_classified(fake_db, exc, expected):
    fake_db.fail(exc)
    backend = FirestoreProfileBackend(fake_db)

    with pytest.raises(expected) as info:
        asyncio.run(backend.upsert("u1", ProfileFields(email="pat@example.com")))
    assert info.value.tier == "firestore"


def test_classify_unknown_google_error_is_unavailable():
    err = classify_store_exception(gexc.GoogleAPICallError("weird"), tier="firestore")
    assert isinstance(err, StoreUnavailable)
    assert err.is_transient


def test_minimal_backend_writes_only_identity_fields(fake_db):
    backend = MinimalFirestoreBackend(fake_db, RoleResolver(["chief@neurohub.io"]))
    fields = ProfileFields(email="chief@neurohub.io", firstName="Ada", lastName="Lovelace",
                           mobile="555", username="ada", role="user")

    profile = asyncio.run(backend.upsert("u9", fields))

    assert profile.role == "admin"
    assert profile.firstName == "Ada"
    assert profile.lastName == ""
    assert profile.username == "chief"
    assert profile.mobile is None


def test_ping_writes_probe_document(fake_db):
    asyncio.run(FirestoreProfileBackend(fake_db).ping())
    assert fake_db.data["connection_test"]["probe"]["message"] == "Connection test"


def test_legacy_is_admin_document_maps_to_doctor():
    profile = profile_from_document("d1", {"email": "doc@example.com", "isAdmin": True})
    assert profile.role == "doctor"
    assert profile.username == "doc"


def test_minimal_backend_keeps_stored_role_and_names(fake_db):
    asyncio.run(FirestoreProfileBackend(fake_db).upsert(
        "d1", ProfileFields(email="doc@example.com", firstName="Greg", lastName="House", role="doctor")))
    backend = MinimalFirestoreBackend(fake_db, RoleResolver(["chief@neurohub.io"]))

    profile = asyncio.run(backend.upsert("d1", ProfileFields(email="doc@example.com")))

    assert profile.role == "doctor"
    assert profile.lastName == "House"
    assert fake_db.data["users"]["d1"]["role"] == "doctor"


def test_minimal_backend_promotes_allowlisted_existing_record(fake_db):
    asyncio.run(FirestoreProfileBackend(fake_db).upsert("a1", ProfileFields(email="chief@neurohub.io")))
    backend = MinimalFirestoreBackend(fake_db, RoleResolver(["chief@neurohub.io"]))

    assert asyncio.run(backend.upsert("a1", ProfileFields(email="chief@neurohub.io"))).role == "admin"
