# identity_api/services/providers.py
"""
OAuth2 / OIDC identity providers.

Each provider is one variant of the same capability: build an authorize URL,
exchange an authorization code for tokens, and turn the tokens into a
``ProviderIdentity`` (subject + email). Providers are enabled by configuring
their client id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt

from identity_api.core.config import Settings
from identity_api.core.errors import UpstreamProviderError
from identity_api.services.jwks import IdTokenVerificationError, JWKSCache, verify_id_token


logger = logging.getLogger(__name__)

IdTokenVerifier = Callable[[str], dict[str, Any]]


@dataclass(frozen=True)
class ProviderIdentity:
    subject: str
    email: str
    claims: dict[str, Any] = field(default_factory=dict)


class OAuthProvider:
    name: str = ""
    authorize_endpoint: str = ""
    token_endpoint: str = ""
    scopes: tuple[str, ...] = ("openid", "email", "profile")
    # "post": credentials in the form body, "basic": HTTP basic auth
    token_auth_method: str = "post"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_client: httpx.Client | None = None,
        *,
        timeout: float = 10.0,
        id_token_verifier: IdTokenVerifier | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._client = http_client or httpx.Client(timeout=timeout)
        self._verify_id_token = id_token_verifier

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    def exchange_code(self, code: str) -> dict[str, Any]:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
        }
        auth = None
        if self.token_auth_method == "basic":
            auth = (self.client_id, self.client_secret)
        else:
            data["client_secret"] = self.client_secret

        try:
            response = self._client.post(
                self.token_endpoint,
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s token exchange failed: %s", self.name, exc)
            raise UpstreamProviderError() from exc

        if response.status_code >= 400:
            logger.warning("%s token exchange rejected (%s)", self.name, response.status_code)
            raise UpstreamProviderError()

        try:
            tokens = response.json()
        except ValueError as exc:
            raise UpstreamProviderError() from exc
        if not isinstance(tokens, dict):
            raise UpstreamProviderError()
        return tokens

    def decode_identity(self, tokens: dict[str, Any]) -> ProviderIdentity:
        """Read subject and email from the id token (decode-only unless a verifier is configured)."""
        id_token = tokens.get("id_token")
        if not id_token:
            logger.warning("%s token response has no id_token", self.name)
            raise UpstreamProviderError()

        try:
            if self._verify_id_token is not None:
                claims = self._verify_id_token(id_token)
            else:
                claims = jwt.get_unverified_claims(id_token)
        except (IdTokenVerificationError, JWTError) as exc:
            logger.warning("%s id token rejected: %s", self.name, exc)
            raise UpstreamProviderError() from exc

        return self._identity_from_claims(claims)

    def _identity_from_claims(self, claims: dict[str, Any]) -> ProviderIdentity:
        subject = claims.get("sub")
        email = claims.get("email")
        if subject is None or subject == "" or not email:
            logger.warning("%s identity is missing sub/email", self.name)
            raise UpstreamProviderError()
        return ProviderIdentity(subject=str(subject), email=str(email), claims=dict(claims))

    def authenticate(self, code: str) -> ProviderIdentity:
        return self.decode_identity(self.exchange_code(code))


class CognitoProvider(OAuthProvider):
    name = "cognito"
    scopes = ("email", "openid", "profile")
    token_auth_method = "basic"

    def __init__(self, domain: str, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.domain = domain.rstrip("/")
        self.authorize_endpoint = f"{self.domain}/oauth2/authorize"
        self.token_endpoint = f"{self.domain}/oauth2/token"


class GoogleProvider(OAuthProvider):
    name = "google"
    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    jwks_url = "https://www.googleapis.com/oauth2/v3/certs"
    issuers = ("accounts.google.com", "https://accounts.google.com")


class DiscordProvider(OAuthProvider):
    """Discord is plain OAuth2: identity comes from the user endpoint, not an id token."""

    name = "discord"
    authorize_endpoint = "https://discord.com/api/oauth2/authorize"
    token_endpoint = "https://discord.com/api/oauth2/token"
    user_endpoint = "https://discord.com/api/users/@me"
    scopes = ("identify", "email")

    def decode_identity(self, tokens: dict[str, Any]) -> ProviderIdentity:
        access_token = tokens.get("access_token")
        if not access_token:
            raise UpstreamProviderError()

        try:
            response = self._client.get(
                self.user_endpoint,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("discord user lookup failed: %s", exc)
            raise UpstreamProviderError() from exc

        if response.status_code >= 400:
            logger.warning("discord user lookup rejected (%s)", response.status_code)
            raise UpstreamProviderError()

        try:
            profile = response.json()
        except ValueError as exc:
            raise UpstreamProviderError() from exc

        return self._identity_from_claims({"sub": profile.get("id"), **profile})


def build_providers(settings: Settings, http_client: httpx.Client | None = None) -> dict[str, OAuthProvider]:
    """Instantiate every provider that has a client id configured."""
    client = http_client or httpx.Client(timeout=settings.OUTBOUND_TIMEOUT_SECONDS)
    timeout = settings.OUTBOUND_TIMEOUT_SECONDS

    def callback(name: str) -> str:
        return f"{settings.PUBLIC_BASE_URL}/login/{name}/callback"

    def verifier(jwks_url: str, issuers: tuple[str, ...], audience: str) -> IdTokenVerifier | None:
        if not settings.OAUTH_VERIFY_ID_TOKENS:
            return None
        cache = JWKSCache(jwks_url, http_client=client, timeout=timeout)
        return lambda token: verify_id_token(token, cache, issuers=issuers, audience=audience)

    providers: dict[str, OAuthProvider] = {}

    if settings.COGNITO_CLIENT_ID and settings.COGNITO_DOMAIN:
        providers["cognito"] = CognitoProvider(
            settings.COGNITO_DOMAIN,
            settings.COGNITO_CLIENT_ID,
            settings.COGNITO_CLIENT_SECRET,
            callback("cognito"),
            client,
            timeout=timeout,
            id_token_verifier=verifier(
                settings.cognito_jwks_url,
                (settings.cognito_issuer,),
                settings.COGNITO_CLIENT_ID,
            ),
        )

    if settings.GOOGLE_CLIENT_ID:
        providers["google"] = GoogleProvider(
            settings.GOOGLE_CLIENT_ID,
            settings.GOOGLE_CLIENT_SECRET,
            callback("google"),
            client,
            timeout=timeout,
            id_token_verifier=verifier(
                GoogleProvider.jwks_url,
                GoogleProvider.issuers,
                settings.GOOGLE_CLIENT_ID,
            ),
        )

    if settings.DISCORD_CLIENT_ID:
        providers["discord"] = DiscordProvider(
            settings.DISCORD_CLIENT_ID,
            settings.DISCORD_CLIENT_SECRET,
            callback("discord"),
            client,
            timeout=timeout,
        )

    return providers
