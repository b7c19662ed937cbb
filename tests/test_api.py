from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, urlparse

from google.api_core import exceptions as gexc

from neurohub.app.core.errors import IdentityProviderError
from neurohub.app.services.verification import issue_fallback_token, now_ms


def test_email_verified_with_fallback_token(client, provider, fake_db):
    provider.add("u1", "pat@example.com")
    token = issue_fallback_token("u1", "pat@example.com", ttl_seconds=60)

    resp = client.get("/auth/email-verified", params={"token": token})

    assert resp.status_code == 200
    body = resp.json()
    assert body["state"] == "success"
    assert body["reconciliation"]["status"] == "complete"
    assert body["reconciliation"]["tier"] == "firestore"
    assert fake_db.data["users"]["u1"]["role"] == "user"


def test_email_verified_error_mapping(client, provider):
    provider.add("u1", "pat@example.com")
    provider.action_codes["broken"] = IdentityProviderError("provider down")
    expired = issue_fallback_token("u1", "pat@example.com", ttl_seconds=0, issued_at_ms=now_ms() - 5000)

    resp = client.get("/auth/email-verified", params={"token": expired})
    assert resp.status_code == 400
    assert resp.json()["detail"] == {"state": "error", "code": "EXPIRED_TOKEN",
                                     "message": "The verification link has expired"}

    assert client.get("/auth/email-verified").json()["detail"]["code"] == "MISSING_VERIFICATION_PARAMETER"
    assert client.get("/auth/email-verified", params={"token": "@@@"}).status_code == 400

    unknown = issue_fallback_token("ghost", "ghost@example.com", ttl_seconds=60)
    assert client.get("/auth/email-verified", params={"token": unknown}).status_code == 404

    resp = client.get("/auth/email-verified", params={"mode": "verifyEmail", "oobCode": "broken"})
    assert resp.status_code == 502
    assert resp.json()["detail"]["code"] == "IDENTITY_PROVIDER_ERROR"


def test_register_then_verify_uses_registration_data(client, provider, fake_db):
    resp = client.post("/auth/register", data={
        "firstName": "Jane", "lastName": "Doe", "email": "jane@neurohub.io",
        "password": "secret123", "mobile": "555 123 4567",
    })

    assert resp.status_code == 201
    body = resp.json()
    assert body["pending_verification"] is True
    assert body["verification"]["status"] == "link_generated"

    link = urlparse(body["verification"]["fallback_link"])
    token = parse_qs(link.query)["token"][0]
    verified = client.get("/auth/email-verified", params={"token": token})

    assert verified.status_code == 200
    stored = fake_db.data["users"][body["user_id"]]
    assert (stored["firstName"], stored["lastName"], stored["mobile"]) == ("Jane", "Doe", "555 123 4567")
    assert stored["username"] == "janedoe"


def test_profile_api_with_service_key(client):
    headers = {"X-Service-Key": "svc-key"}
    body = {"email": "chief@neurohub.io", "firstName": "Ada"}

    created = client.post("/identities/a1/profile", json=body, headers=headers)
    merged = client.post("/identities/a1/profile", json={**body, "lastName": "Lovelace"}, headers=headers)

    assert created.status_code == 201
    assert merged.status_code == 200
    assert created.json()["role"] == "admin"
    assert merged.json()["createdAt"] == created.json()["createdAt"]
    assert merged.json()["lastName"] == "Lovelace"
    assert client.get("/identities/a1/profile", headers=headers).json()["firstName"] == "Ada"


def test_profile_api_access_rules(client, auth_headers):
    body = {"email": "pat@example.com"}

    assert client.post("/identities/u1/profile", json=body).status_code == 401
    assert client.post("/identities/u1/profile", json=body,
                       headers={"X-Service-Key": "wrong"}).status_code == 401
    assert client.post("/identities/u1/profile", json=body,
                       headers=auth_headers("u2", "other@example.com")).status_code == 403
    assert client.post("/identities/u1/profile", json={"email": "else@example.com"},
                       headers=auth_headers("u1", "pat@example.com")).status_code == 400

    own = client.post("/identities/u1/profile", json=body, headers=auth_headers("u1", "pat@example.com"))
    assert own.status_code == 201
    assert own.json()["role"] == "user"

    admin_read = client.get("/identities/u1/profile", headers=auth_headers("a1", "chief@neurohub.io"))
    assert admin_read.status_code == 200
    assert client.get("/identities/nobody/profile",
                      headers=auth_headers("a1", "chief@neurohub.io")).status_code == 404


def test_role_is_resolved_from_doctor_records(client, fake_db):
    fake_db.data["doctors"] = {"d1": {"email": "doc@example.com"}}
    resp = client.post("/identities/d1/profile", json={"email": "doc@example.com"},
                       headers={"X-Service-Key": "svc-key"})
    assert resp.json()["role"] == "doctor"


def test_profile_api_store_outage_is_503(client, fake_db):
    fake_db.fail(gexc.ServiceUnavailable("down"), ops=("get", "set"))
    resp = client.post("/identities/u1/profile", json={"email": "pat@example.com"},
                       headers={"X-Service-Key": "svc-key"})
    assert resp.status_code == 503


def test_resend_verification_email(client, provider, auth_headers):
    provider.add("u1", "pat@example.com")
    provider.add("u2", "done@example.com", verified=True)

    pending = client.post("/identities/u1/verification-email", headers=auth_headers("u1", "pat@example.com"))
    done = client.post("/identities/u2/verification-email", headers={"X-Service-Key": "svc-key"})
    missing = client.post("/identities/ghost/verification-email", headers={"X-Service-Key": "svc-key"})

    assert pending.json()["status"] == "link_generated"
    assert done.json() == {"uid": "u2", "status": "already_verified",
                           "verification_link": None, "fallback_link": None}
    assert missing.status_code == 404


def test_users_me_reads_remote_then_local_when_offline(client, services, fake_db, auth_headers):
    headers = auth_headers("u1", "pat@example.com")
    assert client.get("/users/me", headers=headers).status_code == 404

    client.post("/identities/u1/profile", json={"email": "pat@example.com", "firstName": "Pat"}, headers=headers)
    assert client.get("/users/me", headers=headers).json()["firstName"] == "Pat"

    fake_db.fail(gexc.ServiceUnavailable("down"))
    asyncio.run(services.monitor.refresh())
    assert services.monitor.state.is_offline

    offline = client.get("/users/me", headers=headers)
    assert offline.status_code == 200
    assert offline.json()["firstName"] == "Pat"


def test_users_me_requires_token(client, auth_headers):
    assert client.get("/users/me").status_code == 401
    assert client.get("/users/me", headers=auth_headers("anonymous_123")).status_code == 403


def test_network_endpoints(client):
    state = client.get("/network/state")
    assert state.status_code == 200
    assert state.json()["status"] == "unknown"

    hint = client.post("/network/online")
    assert hint.status_code == 202
    assert hint.json()["detail"] == "Probe scheduled"


def test_fallback_link_cannot_be_replayed(client, provider):
    provider.add("u1", "pat@example.com")
    token = issue_fallback_token("u1", "pat@example.com", ttl_seconds=60)

    assert client.get("/auth/email-verified", params={"token": token}).status_code == 200
    replay = client.get("/auth/email-verified", params={"token": token})

    assert replay.status_code == 400
    assert replay.json()["detail"]["code"] == "MALFORMED_TOKEN"
