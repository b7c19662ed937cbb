from __future__ import annotations

from typing import Callable, Dict

import pytest
from fastapi.testclient import TestClient

from fakes import FakeFirestore, FakeIdentityProvider
from neurohub.app.config import Settings
from neurohub.app.core.deps import build_services
from neurohub.app.core.roles import RoleResolver
from neurohub.app.repositories.local_store import (
    ConsumedTokenStore,
    LocalJsonStore,
    LocalProfileBackend,
    PendingRegistrationStore,
    SessionProfileBackend,
)
from neurohub.app.services.reconciliation import ReconciliationOrchestrator

PRIVILEGED = "chief@neurohub.io"


@pytest.fixture
def resolver() -> RoleResolver:
    return RoleResolver([PRIVILEGED, "Admin@Example.com"])


@pytest.fixture
def local_store(tmp_path) -> LocalJsonStore:
    return LocalJsonStore(str(tmp_path / "local_store.json"))


@pytest.fixture
def local(local_store, resolver) -> LocalProfileBackend:
    return LocalProfileBackend(local_store, resolver)


@pytest.fixture
def session(resolver) -> SessionProfileBackend:
    return SessionProfileBackend(resolver)


@pytest.fixture
def pending_store(local_store) -> PendingRegistrationStore:
    return PendingRegistrationStore(local_store)


@pytest.fixture
def consumed_tokens(local_store) -> ConsumedTokenStore:
    return ConsumedTokenStore(local_store)


@pytest.fixture
def make_orchestrator(resolver, local, session) -> Callable[..., ReconciliationOrchestrator]:
    def _make(backends, **kwargs) -> ReconciliationOrchestrator:
        kwargs.setdefault("retry_delay", 0)
        return ReconciliationOrchestrator(backends, resolver, local, session, **kwargs)

    return _make


@pytest.fixture
def fake_db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        debug=True,
        privileged_emails=f"{PRIVILEGED},admin@example.com",
        local_cache_path=str(tmp_path / "service_store.json"),
        network_probe_interval_seconds=0,
        tier_retry_delay_seconds=0,
        app_base_url="https://app.neurohub.test",
        service_api_key="svc-key",
        firebase_web_api_key="",
        profile_api_base_url="",
        smtp_user=None,
        smtp_password=None,
    )


@pytest.fixture
def services(settings, fake_db, provider):
    return build_services(settings, db=fake_db, identity_provider=provider)


@pytest.fixture
def client(services):
    from neurohub.app.main import app

    app.state.services = services
    yield TestClient(app)
    del app.state.services


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    def _make(uid: str, email: str = "") -> Dict[str, str]:
        token = f"mock_jwt_token_{uid}:{email}" if email else f"mock_jwt_token_{uid}"
        return {"Authorization": f"Bearer {token}"}

    return _make
