# identity_api/auth/sources.py
"""
Source authentication for machine-to-machine calls.

A trusted sender (the internal system, or the Cognito trigger Lambda) signs
the request body with its private key and sends the base64 signature in a
configured header. One ``SourceAuthenticator`` instance exists per trust
relationship; they differ only in key and header name.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Request

from identity_api.core import signatures
from identity_api.core.errors import (
    InvalidSignatureError,
    InvalidTenantError,
    InvalidTriggerSourceError,
    MissingSignatureError,
    MultipleSignaturesError,
)
from identity_api.core.keys import PublicKey


logger = logging.getLogger(__name__)


async def _json_body(request: Request) -> Any | None:
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


async def signed_payload_candidates(request: Request) -> list[bytes]:
    """
    Byte strings a valid signature may cover for this request.

    JSON bodies are verified over their canonical re-serialization, falling
    back to the raw bytes. Body-less requests (GET/DELETE) sign
    ``{"url": <path>, **path_params}``.
    """
    raw = await request.body()
    if not raw.strip():
        payload: dict[str, Any] = {"url": request.url.path}
        payload.update(request.path_params)
        return [signatures.canonical_json(payload)]

    candidates: list[bytes] = []
    parsed = await _json_body(request)
    if parsed is not None:
        candidates.append(signatures.canonical_json(parsed))
    if raw not in candidates:
        candidates.append(raw)
    return candidates


class SourceAuthenticator:
    """Request gate that only lets through requests signed by one trusted sender."""

    def __init__(self, public_key: PublicKey, header_name: str, *, name: str = "internal") -> None:
        self.public_key = public_key
        self.header_name = header_name.lower()
        self.name = name

    async def __call__(self, request: Request) -> None:
        values = request.headers.getlist(self.header_name)
        if not values:
            raise MissingSignatureError()
        if len(values) > 1:
            raise MultipleSignaturesError()

        signature = values[0]
        for payload in await signed_payload_candidates(request):
            if signatures.verify(payload, signature, self.public_key):
                request.state.source = self.name
                return

        logger.warning(
            "Rejected request with invalid %s signature: %s %s",
            self.name,
            request.method,
            request.url.path,
        )
        raise InvalidSignatureError()


def make_source_authenticator(public_key: PublicKey, header_name: str, *, name: str = "internal") -> SourceAuthenticator:
    return SourceAuthenticator(public_key, header_name, name=name)


class CognitoTriggerValidator:
    """
    Post-signature check that a Cognito trigger payload came from the expected
    trigger and user pool.
    """

    def __init__(self, user_pool_id: str, trigger_source: str = "PostConfirmation_ConfirmSignUp") -> None:
        self.user_pool_id = user_pool_id
        self.trigger_source = trigger_source

    async def __call__(self, request: Request) -> None:
        body = await _json_body(request)
        if not isinstance(body, dict):
            body = {}
        if body.get("triggerSource") != self.trigger_source:
            logger.warning("Rejected Cognito trigger with triggerSource=%s", body.get("triggerSource"))
            raise InvalidTriggerSourceError()
        if body.get("userPoolId") != self.user_pool_id:
            logger.warning("Rejected Cognito trigger for userPoolId=%s", body.get("userPoolId"))
            raise InvalidTenantError()
