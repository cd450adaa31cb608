from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from identity_api.core import signatures
from identity_api.core.config import load_settings
from identity_api.core.keys import KeyStore
from identity_api.dependencies.container import build_services
from identity_api.main import create_app
from identity_api.services.directory import InMemoryUserDirectory
from identity_api.services.queues import InMemoryQueueProvisioner
from identity_api.services.side_effects import InlineScheduler

USER_POOL_ID = "us-east-1_TestPool"
WEBHOOK_CREATE_URL = "https://hooks.example.com/user-created"
WEBHOOK_UPDATE_URL = "https://hooks.example.com/user-updated"
WEBHOOK_DELETE_URL = "https://hooks.example.com/user-deleted"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def generate_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def write_key_pair(directory: Path, name: str, private_key: rsa.RSAPrivateKey) -> tuple[str, str]:
    public_path = directory / f"{name}.pub.pem"
    private_path = directory / f"{name}.pem"
    private_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    public_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return str(public_path), str(private_path)


@pytest.fixture(scope="session")
def private_keys() -> dict[str, rsa.RSAPrivateKey]:
    # RSA generation is slow; one set of keys per test session.
    return {name: generate_private_key() for name in ("session", "webhook", "cognito")}


@pytest.fixture(scope="session")
def key_paths(private_keys, tmp_path_factory) -> dict[str, tuple[str, str]]:
    directory = tmp_path_factory.mktemp("keys")
    return {name: write_key_pair(directory, name, key) for name, key in private_keys.items()}


# ---------------------------------------------------------------------------
# Settings / clock
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings_env(key_paths) -> dict[str, str]:
    return {
        "ENV": "dev",
        "SESSION_PUBLIC_KEY_PATH": key_paths["session"][0],
        "SESSION_PRIVATE_KEY_PATH": key_paths["session"][1],
        "WEBHOOK_PUBLIC_KEY_PATH": key_paths["webhook"][0],
        "WEBHOOK_PRIVATE_KEY_PATH": key_paths["webhook"][1],
        "COGNITO_PUBLIC_KEY_PATH": key_paths["cognito"][0],
        "COGNITO_USER_POOL_ID": USER_POOL_ID,
        "DIRECTORY_BACKEND": "memory",
        "PUBLIC_BASE_URL": "http://localhost:3000",
        "ALLOWED_REDIRECT_HOSTS": "app.example.com",
        "COGNITO_CLIENT_ID": "cognito-client",
        "COGNITO_CLIENT_SECRET": "cognito-secret",
        "COGNITO_DOMAIN": "https://auth.example.com",
        "GOOGLE_CLIENT_ID": "google-client",
        "GOOGLE_CLIENT_SECRET": "google-secret",
        "DISCORD_CLIENT_ID": "discord-client",
        "DISCORD_CLIENT_SECRET": "discord-secret",
        "WEBHOOK_USER_CREATE": WEBHOOK_CREATE_URL,
        "WEBHOOK_USER_UPDATE": WEBHOOK_UPDATE_URL,
        "WEBHOOK_USER_DELETE": WEBHOOK_DELETE_URL,
        "SIDE_EFFECT_MAX_ATTEMPTS": "2",
        "SIDE_EFFECT_BASE_DELAY_SECONDS": "0",
    }


@pytest.fixture()
def settings(settings_env):
    return load_settings(settings_env)


@pytest.fixture()
def keys(settings) -> KeyStore:
    return KeyStore.from_settings(settings)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Outbound HTTP / collaborators
# ---------------------------------------------------------------------------


class FakeUpstream:
    """
    httpx.MockTransport handler: records every request and answers from a
    (method, url-without-query) -> response map. Unmapped URLs get 200 {}.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], httpx.Response] = {}

    def add(self, method: str, url: str, response: httpx.Response) -> None:
        self.responses[(method.upper(), url)] = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url.copy_with(query=None))
        return self.responses.get((request.method, url), httpx.Response(200, json={}))

    def sent_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url.copy_with(query=None)) == url]


class FakeCognitoAdmin:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def set_user_id(self, username: str, user_id: str) -> None:
        self.calls.append((username, user_id))


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def http_client(upstream):
    client = httpx.Client(transport=httpx.MockTransport(upstream))
    yield client
    client.close()


@pytest.fixture()
def directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory()


@pytest.fixture()
def queues() -> InMemoryQueueProvisioner:
    return InMemoryQueueProvisioner()


@pytest.fixture()
def cognito_admin() -> FakeCognitoAdmin:
    return FakeCognitoAdmin()


@pytest.fixture()
def scheduler() -> InlineScheduler:
    return InlineScheduler(max_attempts=2, base_delay=0, sleep=lambda _: None)


@pytest.fixture()
def services(settings, keys, directory, queues, cognito_admin, http_client, clock):
    return build_services(
        settings,
        keys=keys,
        directory=directory,
        queues=queues,
        cognito_admin=cognito_admin,
        http_client=http_client,
        clock=clock,
    )


@pytest.fixture()
def app(settings, services):
    return create_app(settings, services)


@pytest.fixture()
def client(app):
    return TestClient(app)


# ---------------------------------------------------------------------------
# Signing helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def sign_internal(private_keys):
    def _sign(payload) -> str:
        data = payload if isinstance(payload, bytes) else signatures.canonical_json(payload)
        return signatures.sign(data, private_keys["webhook"])

    return _sign


@pytest.fixture()
def sign_cognito(private_keys):
    def _sign(payload) -> str:
        data = payload if isinstance(payload, bytes) else signatures.canonical_json(payload)
        return signatures.sign(data, private_keys["cognito"])

    return _sign


@pytest.fixture()
def cognito_payload():
    def _payload(sub="sub-123", email="a@example.com", **overrides) -> dict:
        body = {
            "version": "1",
            "region": "us-east-1",
            "userPoolId": USER_POOL_ID,
            "userName": str(sub),
            "triggerSource": "PostConfirmation_ConfirmSignUp",
            "request": {
                "userAttributes": {
                    "sub": sub,
                    "email_verified": "true",
                    "email": email,
                }
            },
        }
        body.update(overrides)
        return body

    return _payload
