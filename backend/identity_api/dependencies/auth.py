# identity_api/dependencies/auth.py
from __future__ import annotations

from fastapi import Request

from identity_api.auth.identity import Principal
from identity_api.dependencies.container import get_services


async def require_internal_source(request: Request) -> None:
    """Only the internal system (webhook key) may call this route."""
    await get_services(request).internal_auth(request)


async def require_cognito_trigger(request: Request) -> None:
    """Signed by the Cognito trigger Lambda, for the expected trigger and user pool."""
    services = get_services(request)
    await services.cognito_auth(request)
    await services.cognito_trigger(request)


def require_user_session(request: Request) -> Principal:
    """
    Validates:
      - Authorization: Bearer <session token>   (401 on failure)
      - or the session cookie                   (redirect to login on failure)
    Returns:
      - the authenticated Principal
    """
    return get_services(request).session_auth(request)
