# identity_api/services/jwks.py
"""
Provider id-token verification.

Used by the login flow when ``OAUTH_VERIFY_ID_TOKENS`` is enabled.
Responsibilities:
- Lazy JWKS fetching (no network calls on import)
- In-memory JWKS caching with a TTL, refreshed once on an unknown ``kid``
- Clear typed exceptions for verification failures
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Iterable

import httpx
from jose import JWTError, jwk, jwt


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class IdTokenVerificationError(Exception):
    """Base exception for provider id-token verification failures."""

    pass


class JWKSFetchError(IdTokenVerificationError):
    """Raised when the provider JWKS cannot be fetched."""

    pass


class IdTokenExpiredError(IdTokenVerificationError):
    """Raised when the id token has expired."""

    pass


class IdTokenInvalidError(IdTokenVerificationError):
    """Raised for signature, issuer, audience or structural failures."""

    pass


# ---------------------------------------------------------------------------
# JWKS Cache
# ---------------------------------------------------------------------------


class JWKSCache:
    """Thread-safe in-memory cache for one provider's JWKS."""

    def __init__(
        self,
        jwks_url: str,
        http_client: httpx.Client | None = None,
        ttl_seconds: int = 3600,
        timeout: float = 10.0,
    ) -> None:
        self.jwks_url = jwks_url
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._client = http_client or httpx.Client(timeout=timeout)
        self._lock = threading.Lock()
        self._keys: dict[str, Any] | None = None
        self._fetched_at: float = 0.0

    def get_signing_key(self, kid: str) -> Any:
        with self._lock:
            now = time.time()
            if self._keys is None or (now - self._fetched_at) > self.ttl_seconds:
                self._refresh_keys()

            if kid not in self._keys:
                # Keys may have rotated.
                self._refresh_keys()

            if kid not in self._keys:
                raise IdTokenInvalidError(f"Signing key not found for kid: {kid}")

            return self._keys[kid]

    def _refresh_keys(self) -> None:
        try:
            logger.info("Fetching JWKS from %s", self.jwks_url)
            response = self._client.get(self.jwks_url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch JWKS from %s: %s", self.jwks_url, e)
            raise JWKSFetchError(f"Failed to fetch JWKS: {e}") from e

        keys_list = data.get("keys", []) if isinstance(data, dict) else []
        if not keys_list:
            raise JWKSFetchError("JWKS response contains no keys")

        keys: dict[str, Any] = {}
        for key_data in keys_list:
            kid = key_data.get("kid")
            if not kid:
                continue
            try:
                keys[kid] = jwk.construct(key_data, algorithm=key_data.get("alg", "RS256"))
            except JWTError as e:
                logger.warning("Failed to construct key for kid=%s: %s", kid, e)

        self._keys = keys
        self._fetched_at = time.time()
        logger.info("Cached %d signing keys from %s", len(keys), self.jwks_url)


# ---------------------------------------------------------------------------
# Token Verification
# ---------------------------------------------------------------------------


def verify_id_token(
    token: str,
    cache: JWKSCache,
    *,
    issuers: Iterable[str],
    audience: str,
) -> dict[str, Any]:
    """
    Verify an OIDC id token's signature, expiry, issuer and audience.

    ``issuers`` accepts several spellings because Google issues under both
    ``accounts.google.com`` and ``https://accounts.google.com``.
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise IdTokenInvalidError(f"Invalid token header: {e}") from e

    kid = unverified_header.get("kid")
    if not kid:
        raise IdTokenInvalidError("Token header missing 'kid'")

    signing_key = cache.get_signing_key(kid)

    try:
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            audience=audience,
            options={"verify_iss": False, "verify_at_hash": False},
        )
    except jwt.ExpiredSignatureError as e:
        raise IdTokenExpiredError("Token has expired") from e
    except JWTError as e:
        raise IdTokenInvalidError(f"Token verification failed: {e}") from e

    allowed = set(issuers)
    if claims.get("iss") not in allowed:
        raise IdTokenInvalidError(f"Unexpected issuer {claims.get('iss')}")

    return claims
