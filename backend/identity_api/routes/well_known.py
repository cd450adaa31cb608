# identity_api/routes/well_known.py
"""Public key discovery so third parties can verify session tokens and webhooks."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from identity_api.dependencies.container import Services, get_services

router = APIRouter(prefix="/.well-known", tags=["keys"])


@router.get("/session-jwks.json")
def session_jwks(services: Services = Depends(get_services)) -> dict:
    return {"keys": [services.keys.session.public_jwk()]}


@router.get("/webhook-jwks.json")
def webhook_jwks(services: Services = Depends(get_services)) -> dict:
    return {"keys": [services.keys.webhook.public_jwk()]}
