# app/services/verification.py
"""
Email verification events.

The verification link arrives in one of two shapes:
  - native:  ?mode=verifyEmail&oobCode=<action code>  (applied at Firebase)
  - token:   ?token=<base64 JSON {uid, email, expires}> (our fallback link)
Both are single use: Firebase consumes the action code, a redeemed fallback
token is remembered until it expires.
Anything else is rejected before any store is touched. Once the identity step
succeeds the profile is reconciled; a degraded reconciliation never turns a
verified email into an error.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from typing import Callable, Mapping, Optional, Tuple
from urllib.parse import quote

from pydantic import ValidationError

from neurohub.app.config import Settings
from neurohub.app.core.email_utils import send_email, verification_email_html
from neurohub.app.core.errors import (
    ExpiredToken,
    IdentityNotFound,
    MalformedToken,
    MissingVerificationParameter,
    StoreError,
    VerificationError,
)
from neurohub.app.repositories.local_store import ConsumedTokenStore, PendingRegistrationStore
from neurohub.app.schemas.profile import Identity
from neurohub.app.schemas.verification import (
    FallbackTokenClaims,
    VerificationEmailResponse,
    VerificationFlow,
    VerificationOutcome,
    VerificationState,
)
from neurohub.app.services.reconciliation import ReconciliationOrchestrator

NATIVE_MODE = "verifyEmail"
VERIFIED_PATH = "/email-verified"

StateListener = Callable[[VerificationState], None]


def now_ms() -> int:
    return int(time.time() * 1000)


def issue_fallback_token(uid: str, email: str, ttl_seconds: int, issued_at_ms: Optional[int] = None) -> str:
    issued_at_ms = now_ms() if issued_at_ms is None else issued_at_ms
    claims = FallbackTokenClaims(uid=uid, email=email, expires=issued_at_ms + ttl_seconds * 1000)
    return base64.urlsafe_b64encode(claims.model_dump_json().encode("utf-8")).decode("ascii")


def decode_fallback_token(token: str, current_ms: Optional[int] = None) -> FallbackTokenClaims:
    """Accepts standard or URL-safe base64, with or without padding."""
    # a '+' in an unencoded query string arrives as a space
    cleaned = token.strip().replace(" ", "+").replace("+", "-").replace("/", "_")
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        raw = base64.urlsafe_b64decode(cleaned.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("token payload is not an object")
        claims = FallbackTokenClaims(**data)
    except (binascii.Error, UnicodeError, ValueError, TypeError, ValidationError) as exc:
        raise MalformedToken(f"Verification token could not be decoded: {exc}") from exc

    current_ms = now_ms() if current_ms is None else current_ms
    if claims.expires < current_ms:
        raise ExpiredToken("The verification link has expired")
    return claims


def classify(params: Mapping[str, str]) -> Tuple[VerificationFlow, str]:
    oob_code = (params.get("oobCode") or "").strip()
    token = (params.get("token") or "").strip()
    if oob_code and params.get("mode") == NATIVE_MODE:
        return "native", oob_code
    if token:
        return "token", token
    raise MissingVerificationParameter("No verification code found in the link")


class VerificationReceiver:
    def __init__(self, identity_provider, orchestrator: ReconciliationOrchestrator,
                 pending_registrations: PendingRegistrationStore,
                 consumed_tokens: ConsumedTokenStore,
                 clock: Callable[[], int] = now_ms):
        self.identity_provider = identity_provider
        self.orchestrator = orchestrator
        self.pending_registrations = pending_registrations
        self.consumed_tokens = consumed_tokens
        self.clock = clock

    def _already_used(self, claims: FallbackTokenClaims) -> bool:
        try:
            return self.consumed_tokens.is_consumed(claims.uid, claims.expires)
        except StoreError as exc:
            logging.warning("Consumed token list unreadable for %s: %s", claims.uid, exc.message)
            return False

    def _mark_used(self, claims: FallbackTokenClaims) -> None:
        try:
            self.consumed_tokens.consume(claims.uid, claims.expires, self.clock())
        except StoreError as exc:
            logging.warning("Could not record used token for %s: %s", claims.uid, exc.message)

    async def _verify_token(self, token: str) -> Identity:
        claims = decode_fallback_token(token, self.clock())
        if self._already_used(claims):
            raise MalformedToken("The verification link has already been used")
        identity = await self.identity_provider.get_identity(claims.uid)
        if identity.email.lower() != claims.email.lower():
            raise IdentityNotFound("Verification token does not match the account")
        if not identity.emailVerified:
            identity = await self.identity_provider.mark_email_verified(claims.uid)
        self._mark_used(claims)
        return identity

    def _pending_for(self, identity: Identity):
        try:
            pending = self.pending_registrations.get(identity.uid)
        except StoreError as exc:
            logging.warning("Pending registration for %s unreadable: %s", identity.uid, exc.message)
            return None
        if pending is not None and pending.email and pending.email.lower() != identity.email.lower():
            logging.warning("Ignoring pending registration for %s: email changed since sign-up", identity.uid)
            return None
        return pending

    async def receive(self, params: Mapping[str, str],
                      on_state: Optional[StateListener] = None) -> VerificationOutcome:
        """
        Verify the email and reconcile the profile.
        Raises VerificationError when the verification step itself cannot proceed.
        """
        notify = on_state or (lambda state: None)
        notify("processing")
        flow: Optional[VerificationFlow] = None
        try:
            flow, value = classify(params)
            if flow == "native":
                identity = await self.identity_provider.apply_action_code(value)
            else:
                identity = await self._verify_token(value)
        except VerificationError as exc:
            logging.info("Email verification rejected (%s): %s", flow or "invalid", exc.code)
            notify("error")
            raise

        result = await self.orchestrator.reconcile(identity, self._pending_for(identity))
        notify("success")
        return VerificationOutcome(
            state="success",
            flow=flow,
            uid=identity.uid,
            email=identity.email,
            reconciliation=result,
            warning=result.warning,
        )


async def send_verification_email(identity_provider, uid: str, settings: Settings) -> VerificationEmailResponse:
    """
    Idempotent: an already verified identity gets no mail. Links are returned
    to the caller only when they could not be mailed.
    """
    identity = await identity_provider.get_identity(uid)
    if identity.emailVerified:
        return VerificationEmailResponse(uid=uid, status="already_verified")

    base = settings.app_base_url.rstrip("/")
    link = await identity_provider.generate_verification_link(identity.email, f"{base}{VERIFIED_PATH}")
    token = issue_fallback_token(uid, identity.email, settings.verification_token_ttl_seconds)
    fallback_link = f"{base}{VERIFIED_PATH}?token={quote(token)}"

    if not settings.smtp_configured:
        logging.warning("SMTP not configured; returning verification links for %s", uid)
        return VerificationEmailResponse(uid=uid, status="link_generated",
                                         verification_link=link, fallback_link=fallback_link)

    await send_email(identity.email, "Verify Your Email - NeuroHealthHub",
                     verification_email_html(link, fallback_link), settings=settings)
    return VerificationEmailResponse(uid=uid, status="sent")
