# identity_api/core/keys.py
"""
Key material for signing and verification.

Keys are loaded once at startup from PEM files and never change for the
lifetime of the process. A missing or unreadable required key is fatal:
the service cannot run without its trust roots.
"""
from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Any, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jose import jwk

from identity_api.core.config import Settings


logger = logging.getLogger(__name__)

PublicKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey]
PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]


class KeyLoadError(RuntimeError):
    """Raised when a configured key file is missing, unreadable or not a supported key."""

    pass


def _read_pem(path: str) -> bytes:
    if not path:
        raise KeyLoadError("Key path is not configured")
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise KeyLoadError(f"Unable to read key file {path}: {exc}") from exc


def load_public_key(path: str) -> PublicKey:
    data = _read_pem(path)
    try:
        key = serialization.load_pem_public_key(data)
    except ValueError as exc:
        raise KeyLoadError(f"Invalid public key in {path}: {exc}") from exc
    if not isinstance(key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
        raise KeyLoadError(f"Unsupported public key type in {path}")
    return key


def load_private_key(path: str) -> PrivateKey:
    data = _read_pem(path)
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        raise KeyLoadError(f"Invalid private key in {path}: {exc}") from exc
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise KeyLoadError(f"Unsupported private key type in {path}")
    return key


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class KeyPair:
    """A public key plus, for keys this service signs with, its private half."""

    public_key: PublicKey
    private_key: PrivateKey | None = None

    @property
    def algorithm(self) -> str:
        return "RS256" if isinstance(self.public_key, rsa.RSAPublicKey) else "ES256"

    def public_pem(self) -> str:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")

    def private_pem(self) -> str:
        if self.private_key is None:
            raise KeyLoadError("Key pair is verify-only; no private key loaded")
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")

    @property
    def kid(self) -> str:
        """RFC 7638 thumbprint of the public key."""
        data = jwk.construct(self.public_pem(), algorithm=self.algorithm).to_dict()
        members = ("crv", "kty", "x", "y") if data["kty"] == "EC" else ("e", "kty", "n")
        canonical = json.dumps({k: data[k] for k in members}, separators=(",", ":"), sort_keys=True)
        return _b64url(sha256(canonical.encode("utf-8")).digest())

    def public_jwk(self) -> dict[str, Any]:
        data = jwk.construct(self.public_pem(), algorithm=self.algorithm).to_dict()
        data["use"] = "sig"
        data["kid"] = self.kid
        return data


@dataclass(frozen=True)
class KeyStore:
    """
    All key pairs the service uses.

    - session: this service's own session-signing keys
    - webhook: internal system / outbound webhook keys (same trust relationship)
    - cognito: verify-only key of the Cognito trigger Lambda
    """

    session: KeyPair
    webhook: KeyPair
    cognito: KeyPair

    @classmethod
    def from_settings(cls, settings: Settings) -> KeyStore:
        store = cls(
            session=KeyPair(
                public_key=load_public_key(settings.SESSION_PUBLIC_KEY_PATH),
                private_key=load_private_key(settings.SESSION_PRIVATE_KEY_PATH),
            ),
            webhook=KeyPair(
                public_key=load_public_key(settings.WEBHOOK_PUBLIC_KEY_PATH),
                private_key=load_private_key(settings.WEBHOOK_PRIVATE_KEY_PATH),
            ),
            cognito=KeyPair(public_key=load_public_key(settings.COGNITO_PUBLIC_KEY_PATH)),
        )
        # Session tokens and OAuth state are RS256.
        if store.session.algorithm != "RS256":
            raise KeyLoadError(
                f"Session key pair must be RSA, got {store.session.algorithm} in {settings.SESSION_PRIVATE_KEY_PATH}"
            )
        logger.info(
            "Loaded key material (session kid=%s, webhook kid=%s)",
            store.session.kid,
            store.webhook.kid,
        )
        return store
