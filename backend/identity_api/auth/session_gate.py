# identity_api/auth/session_gate.py
"""
Session authentication for user-facing routes.

Credential source decides the failure mode:

    Authorization: Bearer <token>   -> API caller, any failure is a 401 JSON error
    session cookie                  -> browser, any failure redirects to login
    neither                         -> browser, redirect to login

The login redirect targets the provider recorded in the idp cookie (the one
the user last signed in with), falling back to the default provider.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from urllib.parse import urlencode

from fastapi import Request

from identity_api.auth.identity import Principal
from identity_api.auth.sessions import SessionIssuer
from identity_api.core.errors import InvalidAuthorizationTypeError, LoginRequired, SessionError


logger = logging.getLogger(__name__)


class SessionAuthenticator:
    def __init__(
        self,
        issuer: SessionIssuer,
        *,
        cookie_name: str,
        idp_cookie_name: str,
        default_idp: str = "cognito",
        known_idps: Iterable[str] = ("cognito",),
    ) -> None:
        self.issuer = issuer
        self.cookie_name = cookie_name
        self.idp_cookie_name = idp_cookie_name
        self.default_idp = default_idp
        self.known_idps = frozenset(known_idps) | {default_idp}

    def login_location(self, request: Request) -> str:
        idp = request.cookies.get(self.idp_cookie_name) or self.default_idp
        if idp not in self.known_idps:
            idp = self.default_idp
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        return f"/login/{idp}?{urlencode({'redirect': target})}"

    def __call__(self, request: Request) -> Principal:
        authorization = request.headers.get("authorization")

        if authorization:
            scheme, _, token = authorization.partition(" ")
            if scheme.lower() != "bearer":
                raise InvalidAuthorizationTypeError()
            try:
                claims = self.issuer.validate(token.strip())
            except SessionError as exc:
                logger.info("Rejected bearer session: %s", exc.code)
                raise
            source = "bearer"
        else:
            token = request.cookies.get(self.cookie_name)
            if not token:
                raise LoginRequired(self.login_location(request))
            try:
                claims = self.issuer.validate(token)
            except SessionError as exc:
                logger.info("Rejected session cookie: %s", exc.code)
                raise LoginRequired(self.login_location(request)) from exc
            source = "cookie"

        principal = Principal(
            user_id=claims.user_id,
            session_id=claims.session_id,
            source=source,
            expires_at=claims.expires_at,
        )
        request.state.principal = principal
        return principal


def make_session_authenticator(issuer: SessionIssuer, **kwargs) -> SessionAuthenticator:
    return SessionAuthenticator(issuer, **kwargs)
