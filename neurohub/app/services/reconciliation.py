# app/services/reconciliation.py
"""
Profile reconciliation after an email is verified.

The remote backends are tried in order and the first success wins:
  1. server-mediated profile API
  2. direct Firestore write
  3. minimal last-resort Firestore write
The outcome is then mirrored to the local durable cache (always) and to the
session cache (privileged identities only). When no remote tier accepts the
write the request is queued and reported as `pending`; the network monitor
calls `retry_pending()` once the store is reachable again.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from neurohub.app.core.errors import (
    AllTiersExhausted,
    PermissionDenied,
    StoreError,
    StoreUnavailable,
)
from neurohub.app.core.network import NetworkMonitor
from neurohub.app.core.roles import RoleLookup, RoleResolver
from neurohub.app.repositories.local_store import LocalProfileBackend, SessionProfileBackend
from neurohub.app.repositories.profiles import ProfileBackend
from neurohub.app.schemas.principal import Role
from neurohub.app.schemas.profile import (
    Identity,
    PendingRegistration,
    Profile,
    ProfileFields,
    derive_first_name,
    derive_last_name,
)
from neurohub.app.schemas.verification import ReconciliationResult, TierAttempt

RoleLookupFn = Callable[[str], Awaitable[RoleLookup]]

PENDING_WARNING = (
    "Your email is verified, but we could not finish setting up your profile. "
    "Please retry profile setup later."
)


@dataclass
class ReconciliationRequest:
    identity: Identity
    pending: Optional[PendingRegistration] = None


def build_fields(identity: Identity, pending: Optional[PendingRegistration],
                 role: Optional[Role]) -> ProfileFields:
    """Seed the profile from the pending registration, else from the identity."""
    if pending is not None:
        return ProfileFields(
            email=identity.email,
            firstName=pending.firstName,
            lastName=pending.lastName,
            mobile=pending.mobile or None,
            username=pending.username,
            role=role,
        )
    return ProfileFields(
        email=identity.email,
        firstName=derive_first_name(identity.email, identity.displayName),
        lastName=derive_last_name(identity.displayName),
        role=role,
    )


def _log_tier_failure(backend: ProfileBackend, uid: str, exc: StoreError) -> None:
    if isinstance(exc, PermissionDenied):
        logging.warning("Profile tier %s denied write for %s; check security rules / credentials: %s",
                        backend.name, uid, exc.message)
    elif not exc.is_transient:
        logging.error("Profile tier %s rejected write for %s: %s", backend.name, uid, exc.message)
    else:
        logging.warning("Profile tier %s unavailable for %s: %s", backend.name, uid, exc.message)


class ReconciliationOrchestrator:
    def __init__(
        self,
        backends: Sequence[ProfileBackend],
        resolver: RoleResolver,
        local: LocalProfileBackend,
        session: SessionProfileBackend,
        monitor: Optional[NetworkMonitor] = None,
        role_lookup: Optional[RoleLookupFn] = None,
        retry_attempts: int = 1,
        retry_delay: float = 3.0,
    ):
        self.backends = list(backends)
        self.resolver = resolver
        self.local = local
        self.session = session
        self.monitor = monitor
        self.role_lookup = role_lookup
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._pending: Dict[str, ReconciliationRequest] = {}

    @property
    def offline(self) -> bool:
        return self.monitor is not None and self.monitor.state.is_offline

    def pending_uids(self) -> List[str]:
        return list(self._pending)

    async def resolve_role(self, email: str) -> Optional[Role]:
        """
        The role to write, or None when it cannot be established (no lookup,
        lookup failed, store offline). A None role keeps whatever an existing
        record holds; a new record defaults to "user".
        """
        if self.resolver.is_privileged(email):
            return self.resolver.resolve(email)
        if self.role_lookup is None or self.offline:
            return None
        try:
            lookup: RoleLookup = await self.role_lookup(email)
        except StoreError as exc:
            logging.warning("Role lookup for %s failed, keeping the stored role: %s", email, exc.message)
            return None
        return self.resolver.resolve(email, lookup)

    async def _attempt(self, backend: ProfileBackend, uid: str, fields: ProfileFields) -> Profile:
        tries = 0
        while True:
            try:
                return await backend.upsert(uid, fields)
            except StoreUnavailable:
                if tries >= self.retry_attempts or self.offline:
                    raise
                tries += 1
                await asyncio.sleep(self.retry_delay)

    async def _cascade(self, uid: str, fields: ProfileFields) -> Tuple[Optional[Profile], Optional[str],
                                                                     List[TierAttempt], List[StoreError]]:
        attempts: List[TierAttempt] = []
        errors: List[StoreError] = []
        for backend in self.backends:
            if backend.remote and self.offline:
                attempts.append(TierAttempt(tier=backend.name, outcome="skipped",
                                            message="profile store offline"))
                continue
            try:
                profile = await self._attempt(backend, uid, fields)
            except StoreError as exc:
                exc.tier = exc.tier or backend.name
                _log_tier_failure(backend, uid, exc)
                attempts.append(TierAttempt(tier=backend.name, outcome="failed",
                                            error=exc.code, message=exc.message))
                errors.append(exc)
                continue
            attempts.append(TierAttempt(tier=backend.name, outcome="success"))
            return profile, backend.name, attempts, errors
        return None, None, attempts, errors

    async def _mirror(self, uid: str, fields: ProfileFields, profile: Optional[Profile]) -> Optional[Profile]:
        """Write through to the local and session tiers; returns the local copy."""
        local_copy: Optional[Profile] = None
        try:
            local_copy = await (self.local.put(profile) if profile is not None
                                else self.local.upsert(uid, fields))
        except StoreError as exc:
            _log_tier_failure(self.local, uid, exc)

        source = profile or local_copy
        if source is not None and self.session.accepts(source.email):
            try:
                await self.session.put(source)
            except StoreError as exc:
                _log_tier_failure(self.session, uid, exc)
        return local_copy

    async def reconcile(self, identity: Identity,
                        pending: Optional[PendingRegistration] = None) -> ReconciliationResult:
        uid = identity.uid
        role = await self.resolve_role(identity.email)
        fields = build_fields(identity, pending, role)

        profile, tier, attempts, errors = await self._cascade(uid, fields)
        local_copy = await self._mirror(uid, fields, profile)

        if profile is not None:
            self._pending.pop(uid, None)
            logging.info("Profile for %s reconciled through %s (role=%s)", uid, tier, profile.role)
            return ReconciliationResult(uid=uid, status="complete", profile=profile,
                                        tier=tier, attempts=attempts)

        exhausted = AllTiersExhausted(uid, errors)
        logging.warning("%s; queued for background retry", exhausted)
        self._pending[uid] = ReconciliationRequest(identity=identity, pending=pending)
        return ReconciliationResult(
            uid=uid,
            status="pending",
            profile=local_copy,
            tier=self.local.name if local_copy is not None else None,
            attempts=attempts,
            retryAllowed=True,
            warning=PENDING_WARNING,
        )

    async def retry_pending(self) -> List[ReconciliationResult]:
        """Re-run queued reconciliations; completed ones leave the queue."""
        results = []
        for request in list(self._pending.values()):
            results.append(await self.reconcile(request.identity, request.pending))
        if results:
            done = sum(1 for r in results if r.status == "complete")
            logging.info("Retried %d pending reconciliations, %d completed", len(results), done)
        return results

    async def load_profile(self, uid: str, email: Optional[str] = None) -> Optional[Profile]:
        """
        Read path: the remote tier is the source of truth whenever it answers.
        While it is unreachable, privileged identities get the session snapshot
        first, then everybody falls back to the local durable cache.
        """
        if not self.offline:
            for backend in self.backends:
                if not backend.remote:
                    continue
                try:
                    profile = await backend.get(uid)
                except StoreError as exc:
                    logging.warning("Profile read from %s failed for %s: %s", backend.name, uid, exc.message)
                    continue
                if profile is not None:
                    await self._mirror(uid, ProfileFields(email=profile.email), profile)
                return profile

        if self.resolver.is_privileged(email):
            snapshot = await self.session.get(uid)
            if snapshot is not None:
                return snapshot
        try:
            profile = await self.local.get(uid)
            if profile is None and email:
                # cached before the identity was recreated under a new uid
                profile = await self.local.get_by_email(email)
        except StoreError as exc:
            _log_tier_failure(self.local, uid, exc)
            return None
        return profile
