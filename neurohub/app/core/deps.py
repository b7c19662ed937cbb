# app/core/deps.py
"""
Service container.

Everything the routers need is built once per application and kept on
`app.state.services`. Tests assign their own container there before the first request.
"""
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from neurohub.app.config import Settings, settings as default_settings
from neurohub.app.core.firebase import get_db
from neurohub.app.core.network import NetworkMonitor
from neurohub.app.core.roles import RoleResolver, lookup_roles
from neurohub.app.integrations.identity_provider import FirebaseIdentityProvider
from neurohub.app.integrations.profile_api import ApiProfileBackend
from neurohub.app.repositories.local_store import (
    ConsumedTokenStore,
    LocalJsonStore,
    LocalProfileBackend,
    PendingRegistrationStore,
    SessionProfileBackend,
)
from neurohub.app.repositories.profiles import FirestoreProfileBackend, MinimalFirestoreBackend
from neurohub.app.services.reconciliation import ReconciliationOrchestrator
from neurohub.app.services.verification import VerificationReceiver


@dataclass
class Services:
    settings: Settings
    identity_provider: FirebaseIdentityProvider
    resolver: RoleResolver
    firestore: FirestoreProfileBackend
    local: LocalProfileBackend
    session: SessionProfileBackend
    pending_registrations: PendingRegistrationStore
    consumed_tokens: ConsumedTokenStore
    monitor: NetworkMonitor
    orchestrator: ReconciliationOrchestrator
    receiver: VerificationReceiver


def build_services(
    settings: Optional[Settings] = None,
    db=None,
    identity_provider=None,
    api_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Services:
    settings = settings or default_settings
    db = db if db is not None else get_db(settings)
    identity_provider = identity_provider or FirebaseIdentityProvider(settings.firebase_web_api_key)

    resolver = RoleResolver(settings.privileged_email_set)
    firestore_backend = FirestoreProfileBackend(db)
    backends = []
    if settings.profile_api_base_url:
        backends.append(ApiProfileBackend(
            settings.profile_api_base_url,
            service_key=settings.service_api_key,
            timeout=settings.profile_api_timeout_seconds,
            transport=api_transport,
        ))
    backends += [firestore_backend, MinimalFirestoreBackend(db, resolver)]

    store = LocalJsonStore(settings.local_cache_path)
    local = LocalProfileBackend(store, resolver)
    session = SessionProfileBackend(resolver)
    pending_registrations = PendingRegistrationStore(store)
    consumed_tokens = ConsumedTokenStore(store)

    monitor = NetworkMonitor(
        probe=firestore_backend.ping,
        interval_seconds=settings.network_probe_interval_seconds,
        timeout_seconds=settings.network_probe_timeout_seconds,
    )

    async def _role_lookup(email: str):
        return await lookup_roles(db, email)

    orchestrator = ReconciliationOrchestrator(
        backends,
        resolver,
        local,
        session,
        monitor=monitor,
        role_lookup=_role_lookup,
        retry_attempts=settings.tier_retry_attempts,
        retry_delay=settings.tier_retry_delay_seconds,
    )
    # credentials are refreshed before the queued profile writes are retried
    monitor.on_reconnect(identity_provider.refresh_credentials)
    monitor.on_online(orchestrator.retry_pending)

    receiver = VerificationReceiver(identity_provider, orchestrator, pending_registrations, consumed_tokens)
    return Services(
        settings=settings,
        identity_provider=identity_provider,
        resolver=resolver,
        firestore=firestore_backend,
        local=local,
        session=session,
        pending_registrations=pending_registrations,
        consumed_tokens=consumed_tokens,
        monitor=monitor,
        orchestrator=orchestrator,
        receiver=receiver,
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services()
        request.app.state.services = services
    return services
