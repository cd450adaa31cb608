# identity_api/auth/sessions.py
"""
First-party session tokens.

Sessions are stateless RS256 JWTs signed with the service's own session key:

    {"userId": ..., "sessionId": ..., "iat": <epoch s>, "exp": <iat + duration>}

Validity is entirely signature + expiry. Nothing is stored server-side, so a
token cannot be revoked before it expires.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from jose import JWTError, jwt

from identity_api.core.errors import (
    SessionBadSignatureError,
    SessionExpiredError,
    SessionMalformedError,
)
from identity_api.core.keys import KeyPair


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    session_id: str
    issued_at: int
    expires_at: int


class SessionIssuer:
    def __init__(self, key_pair: KeyPair, duration_seconds: int = 24 * 3600, clock: Clock = _now_utc) -> None:
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        self._key_pair = key_pair
        self._private_pem = key_pair.private_pem()
        self._public_pem = key_pair.public_pem()
        self._kid = key_pair.kid
        self.duration_seconds = duration_seconds
        self._clock = clock

    def issue(self, user_id: str, session_id: str) -> str:
        now = int(self._clock().timestamp())
        payload = {
            "userId": str(user_id),
            "sessionId": str(session_id),
            "iat": now,
            "exp": now + self.duration_seconds,
        }
        return jwt.encode(payload, self._private_pem, algorithm="RS256", headers={"kid": self._kid})

    def validate(self, token: str) -> SessionClaims:
        """
        Verify signature and expiry of a session token.

        Raises:
            SessionMalformedError: not a structurally valid token / missing claims
            SessionBadSignatureError: signature (or algorithm) does not verify
            SessionExpiredError: signature valid but ``exp`` is in the past
        """
        if not token or not isinstance(token, str):
            raise SessionMalformedError()

        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise SessionMalformedError() from exc

        try:
            # Expiry is checked below against the injected clock.
            claims: dict[str, Any] = jwt.decode(
                token,
                self._public_pem,
                algorithms=["RS256"],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as exc:
            raise SessionBadSignatureError() from exc

        user_id = claims.get("userId")
        session_id = claims.get("sessionId")
        exp = claims.get("exp")
        iat = claims.get("iat")
        if not user_id or not session_id or not isinstance(exp, int):
            raise SessionMalformedError()

        now = int(self._clock().timestamp())
        if now > exp:
            raise SessionExpiredError()

        return SessionClaims(
            user_id=str(user_id),
            session_id=str(session_id),
            issued_at=int(iat) if isinstance(iat, int) else exp - self.duration_seconds,
            expires_at=exp,
        )
