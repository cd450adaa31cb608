from __future__ import annotations

import base64
import json
import logging
import os
from functools import lru_cache
from typing import Any

import boto3
import requests
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

FORWARDED_TRIGGERS = {"PostConfirmation_ConfirmSignUp"}


def _env(name: str, default: str | None = None) -> str:
    v = os.getenv(name, default)
    if v is None or not str(v).strip():
        raise RuntimeError(f"Missing env var: {name}")
    return str(v).strip()


@lru_cache(maxsize=1)
def _load_signing_key() -> Any:
    """Private half of the Cognito trigger key pair, stored as a PEM secret."""
    arn = _env("COGNITO_SIGNING_KEY_SECRET_ARN")
    resp = boto3.client("secretsmanager").get_secret_value(SecretId=arn)
    pem = resp.get("SecretString")
    if not pem:
        binary = resp.get("SecretBinary")
        if binary:
            if isinstance(binary, str):
                binary = base64.b64decode(binary)
            pem = binary.decode("utf-8")
    if not pem:
        raise RuntimeError("Cognito signing key secret is empty")
    return serialization.load_pem_private_key(pem.strip().encode("utf-8"), password=None)


def sign_event(event: dict[str, Any], private_key: Any) -> tuple[bytes, str]:
    """Serialize the event exactly as the identity service re-serializes it, and sign those bytes."""
    body = json.dumps(event, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    if isinstance(private_key, rsa.RSAPrivateKey):
        raw = private_key.sign(body, padding.PKCS1v15(), hashes.SHA256())
    else:
        raw = private_key.sign(body, ec.ECDSA(hashes.SHA256()))
    return body, base64.b64encode(raw).decode("ascii")


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:  # noqa: ARG001
    """
    Cognito Post Confirmation trigger handler.

    Forwards the confirmed signup to the identity service so the Cognito
    identity is linked to (or creates) a canonical user.

    Env vars:
    - IDENTITY_API_BASE_URL
    - COGNITO_SIGNING_KEY_SECRET_ARN
    - COGNITO_SIG_HEADER (default x-cognito-signature)
    """
    trigger = event.get("triggerSource")
    user_name = event.get("userName")

    logger.info(
        "PostConfirmation trigger received (triggerSource=%s, userPoolId=%s, userName=%s)",
        trigger or "unknown",
        event.get("userPoolId") or "unknown",
        user_name or "unknown",
    )

    if trigger not in FORWARDED_TRIGGERS:
        logger.info("Not forwarding triggerSource %s", trigger)
        return event

    url = f"{_env('IDENTITY_API_BASE_URL').rstrip('/')}/user/cognito"
    body, signature = sign_event(event, _load_signing_key())
    headers = {
        "Content-Type": "application/json",
        _env("COGNITO_SIG_HEADER", "x-cognito-signature"): signature,
    }

    res = requests.post(url, data=body, headers=headers, timeout=15)
    if res.status_code == 409:
        # Replayed trigger: this Cognito identity is already linked.
        logger.info("Identity for %s already linked", user_name)
    elif res.status_code < 200 or res.status_code >= 300:
        text = (res.text or "").strip()
        raise RuntimeError(f"Identity service rejected trigger: status={res.status_code} body={text}")
    else:
        logger.info("Forwarded confirmation for %s (status=%s)", user_name, res.status_code)

    return event
