# identity_api/services/login_flow.py
"""
Provider login flow.

    start:    redirect target -> signed state + nonce -> provider authorize URL
    callback: code + state -> token exchange -> identity -> reconcile -> session

The OAuth ``state`` is a short-lived RS256 token signed with the session key
carrying ``{provider, redirect, nonce}``. The same nonce is set as an
httpOnly cookie when the flow starts; the callback only proceeds when the
state verifies, has not expired, names this provider, and its nonce matches
the cookie. The redirect target is checked once when the flow starts and
again when it ends.
"""
from __future__ import annotations

import hmac
import logging
import secrets
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlparse

from jose import JWTError, jwt

from identity_api.auth.sessions import SessionIssuer
from identity_api.core.errors import (
    InvalidOAuthStateError,
    InvalidRedirectError,
    NoRedirectUrlProvidedError,
    UnknownProviderError,
)
from identity_api.core.keys import KeyPair
from identity_api.schemas.user import CanonicalUser
from identity_api.services.providers import OAuthProvider
from identity_api.services.side_effects import Scheduler
from identity_api.services.users import IdentityReconciler, ReconcileOutcome


logger = logging.getLogger(__name__)

STATE_TOKEN_TYPE = "oauth_state"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LoginStart:
    provider: str
    location: str
    nonce: str


@dataclass(frozen=True)
class LoginCompletion:
    provider: str
    redirect: str
    session_token: str
    user: CanonicalUser
    outcome: ReconcileOutcome


class ProviderFlowOrchestrator:
    def __init__(
        self,
        providers: Mapping[str, OAuthProvider],
        reconciler: IdentityReconciler,
        issuer: SessionIssuer,
        state_key: KeyPair,
        *,
        allowed_redirect_hosts: Iterable[str] = (),
        state_ttl_seconds: int = 600,
        clock: Callable[[], datetime] = _now_utc,
        session_id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.providers = dict(providers)
        self.reconciler = reconciler
        self.issuer = issuer
        self._state_private_pem = state_key.private_pem()
        self._state_public_pem = state_key.public_pem()
        self.allowed_redirect_hosts = {h.lower() for h in allowed_redirect_hosts}
        self.state_ttl_seconds = state_ttl_seconds
        self._clock = clock
        self._session_id_factory = session_id_factory

    def provider(self, name: str) -> OAuthProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise UnknownProviderError()
        return provider

    def validate_redirect(self, redirect: str | None) -> str:
        """Allow relative paths on this site, or absolute http(s) URLs on an allowed host."""
        if not redirect or not redirect.strip():
            raise NoRedirectUrlProvidedError()
        redirect = redirect.strip()

        if redirect.startswith("/"):
            if redirect.startswith("//") or "\\" in redirect:
                raise InvalidRedirectError()
            return redirect

        parsed = urlparse(redirect)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise InvalidRedirectError()
        if parsed.hostname.lower() not in self.allowed_redirect_hosts:
            logger.warning("Rejected login redirect to host %s", parsed.hostname)
            raise InvalidRedirectError()
        return redirect

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def encode_state(self, provider: str, redirect: str, nonce: str) -> str:
        now = int(self._clock().timestamp())
        claims = {
            "typ": STATE_TOKEN_TYPE,
            "provider": provider,
            "redirect": redirect,
            "nonce": nonce,
            "iat": now,
            "exp": now + self.state_ttl_seconds,
        }
        return jwt.encode(claims, self._state_private_pem, algorithm="RS256")

    def decode_state(self, state: str | None, provider: str, nonce_cookie: str | None) -> dict[str, Any]:
        if not state:
            raise InvalidOAuthStateError()
        try:
            claims = jwt.decode(
                state,
                self._state_public_pem,
                algorithms=["RS256"],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as exc:
            logger.warning("Rejected login state for %s: bad signature or format", provider)
            raise InvalidOAuthStateError() from exc

        exp = claims.get("exp")
        if claims.get("typ") != STATE_TOKEN_TYPE or not isinstance(exp, int):
            raise InvalidOAuthStateError()
        if int(self._clock().timestamp()) > exp:
            logger.info("Rejected expired login state for %s", provider)
            raise InvalidOAuthStateError()
        if claims.get("provider") != provider:
            raise InvalidOAuthStateError()

        nonce = claims.get("nonce")
        if not nonce or not nonce_cookie or not hmac.compare_digest(str(nonce), nonce_cookie):
            logger.warning("Rejected login state for %s: nonce mismatch", provider)
            raise InvalidOAuthStateError()
        return claims

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    def start(self, provider_name: str, redirect: str | None) -> LoginStart:
        provider = self.provider(provider_name)
        target = self.validate_redirect(redirect)
        nonce = secrets.token_urlsafe(24)
        state = self.encode_state(provider.name, target, nonce)
        return LoginStart(provider=provider.name, location=provider.authorization_url(state), nonce=nonce)

    def complete(
        self,
        provider_name: str,
        code: str | None,
        state: str | None,
        nonce_cookie: str | None,
        *,
        scheduler: Scheduler,
    ) -> LoginCompletion:
        provider = self.provider(provider_name)
        claims = self.decode_state(state, provider.name, nonce_cookie)
        redirect = self.validate_redirect(claims.get("redirect"))
        if not code:
            raise InvalidOAuthStateError("Missing authorization code")

        identity = provider.authenticate(code)
        result = self.reconciler.reconcile_by_provider_identity(
            provider.name,
            identity.subject,
            identity.email,
            scheduler=scheduler,
        )

        token = self.issuer.issue(result.user.id, self._session_id_factory())
        logger.info("Login via %s for user %s (%s)", provider.name, result.user.id, result.outcome.value)
        return LoginCompletion(
            provider=provider.name,
            redirect=redirect,
            session_token=token,
            user=result.user,
            outcome=result.outcome,
        )
