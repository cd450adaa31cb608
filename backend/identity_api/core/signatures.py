# identity_api/core/signatures.py
"""
Detached request signatures.

A signature is SHA-256 + the key's asymmetric scheme (RSA PKCS#1 v1.5 or
ECDSA) over the exact payload bytes, base64 encoded. Signer and verifier
must agree byte-for-byte on the payload, so JSON bodies are always reduced
to ``canonical_json`` first: compact separators, keys in the order they
were constructed/received, non-ASCII left unescaped.
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from identity_api.core.keys import PrivateKey, PublicKey


def canonical_json(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign(payload: bytes, private_key: PrivateKey) -> str:
    if isinstance(private_key, rsa.RSAPrivateKey):
        raw = private_key.sign(payload, padding.PKCS1v15(), hashes.SHA256())
    else:
        raw = private_key.sign(payload, ec.ECDSA(hashes.SHA256()))
    return base64.b64encode(raw).decode("ascii")


def verify(payload: bytes, signature: str, public_key: PublicKey) -> bool:
    """Return True only if ``signature`` is valid for ``payload``. Never raises."""
    if not isinstance(signature, str) or not signature.strip():
        return False
    try:
        raw = base64.b64decode(signature.strip(), validate=True)
    except (binascii.Error, ValueError):
        return False

    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(raw, payload, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(raw, payload, ec.ECDSA(hashes.SHA256()))
        else:
            return False
    except (InvalidSignature, ValueError):
        return False
    return True
