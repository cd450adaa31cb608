# identity_api/core/errors.py
"""
Error taxonomy for the identity service.

Every failure the auth core can signal is an ``IdentityError`` carrying the
HTTP status it maps to, a stable machine-readable ``code`` and a human message.
The exception handlers in ``identity_api.main`` render them as
``{"error": <message>, "code": <code>}``.
"""
from __future__ import annotations


class IdentityError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


# ---------------------------------------------------------------------------
# Source (request signature) authentication
# ---------------------------------------------------------------------------


class MissingSignatureError(IdentityError):
    """Raised when the trusted-sender signature header is absent."""

    status_code = 400
    code = "MISSING_SIGNATURE"
    message = "Missing signature"


class MultipleSignaturesError(IdentityError):
    """Raised when the signature header is repeated."""

    status_code = 400
    code = "MULTIPLE_SIGNATURES"
    message = "Only Include One Signature"


class InvalidSignatureError(IdentityError):
    """Raised when the signature does not verify against the sender's key."""

    status_code = 401
    code = "INVALID_SIGNATURE"
    message = "Invalid signature"


class InvalidTriggerSourceError(IdentityError):
    status_code = 400
    code = "INVALID_TRIGGER_SOURCE"
    message = "Invalid trigger source"


class InvalidTenantError(IdentityError):
    status_code = 400
    code = "INVALID_TENANT"
    message = "Invalid user pool ID"


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionError(IdentityError):
    """Base exception for session token validation failures."""

    status_code = 401
    code = "UNAUTHORIZED"
    message = "Unauthorized"


class SessionExpiredError(SessionError):
    code = "SESSION_EXPIRED"
    message = "Session has expired"


class SessionBadSignatureError(SessionError):
    code = "SESSION_BAD_SIGNATURE"
    message = "Invalid session signature"


class SessionMalformedError(SessionError):
    code = "SESSION_MALFORMED"
    message = "Malformed session token"


class InvalidAuthorizationTypeError(SessionError):
    code = "INVALID_AUTHORIZATION_TYPE"
    message = "Invalid authorization type"


class LoginRequired(Exception):
    """
    Signal that a browser client must be sent to the login flow.

    Not an ``IdentityError``: it renders as a redirect, never as a JSON body.
    """

    def __init__(self, location: str) -> None:
        super().__init__(location)
        self.location = location


# ---------------------------------------------------------------------------
# Users / directory
# ---------------------------------------------------------------------------


class UserExistsError(IdentityError):
    status_code = 409
    code = "USER_EXISTS"
    message = "User already exists"


class IdentityConflictError(IdentityError):
    """Raised when an email is already linked to a different subject of the same provider."""

    status_code = 409
    code = "IDENTITY_CONFLICT"
    message = "Account is already linked to a different identity for this provider"


class UserNotFoundError(IdentityError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not Found"


class DownstreamCreateError(IdentityError):
    status_code = 500
    code = "DOWNSTREAM_FAILURE"
    message = "Unable to create user"


# ---------------------------------------------------------------------------
# OAuth provider flows
# ---------------------------------------------------------------------------


class UnknownProviderError(IdentityError):
    status_code = 404
    code = "UNKNOWN_PROVIDER"
    message = "Unknown identity provider"


class NoRedirectUrlProvidedError(IdentityError):
    status_code = 400
    code = "NO_REDIRECT_URL"
    message = "No redirect URL provided"


class InvalidRedirectError(IdentityError):
    status_code = 400
    code = "INVALID_REDIRECT"
    message = "Redirect URL is not allowed"


class InvalidOAuthStateError(IdentityError):
    status_code = 400
    code = "INVALID_STATE"
    message = "Invalid or expired login state"


class UpstreamProviderError(IdentityError):
    """Raised when the provider's token exchange or identity lookup fails."""

    status_code = 500
    code = "UPSTREAM_PROVIDER_FAILURE"
    message = "Login with identity provider failed"
