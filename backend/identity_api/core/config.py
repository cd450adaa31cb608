# identity_api/core/config.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import urlparse

from dotenv import load_dotenv


def str_to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def merge_unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in items:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_SHORT_DURATION = re.compile(r"^(\d+)\s*([smhd])$")
_ISO_DURATION = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$")


def parse_duration(value: str | int) -> int:
    """
    Parse a duration into seconds.

    Accepts plain seconds ("86400"), a short form ("24h", "30m", "7d") or an
    ISO-8601 duration ("PT24H", "P1D", "P1DT12H").
    """
    if isinstance(value, int):
        seconds = value
    else:
        raw = value.strip()
        if raw.isdigit():
            seconds = int(raw)
        elif m := _SHORT_DURATION.match(raw.lower()):
            seconds = int(m.group(1)) * _UNIT_SECONDS[m.group(2)]
        elif m := _ISO_DURATION.match(raw.upper()):
            days, hours, minutes, secs = (int(g) if g else 0 for g in m.groups())
            seconds = days * 86400 + hours * 3600 + minutes * 60 + secs
        else:
            raise ValueError(f"Invalid duration: {value!r}")

    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return seconds


@dataclass(frozen=True)
class Settings:
    # ----------------------------
    # Runtime
    # ----------------------------
    ENV: str = "dev"  # dev | prod
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = field(default_factory=list)

    # ----------------------------
    # Key material (PEM paths)
    # ----------------------------
    SESSION_PUBLIC_KEY_PATH: str = ""
    SESSION_PRIVATE_KEY_PATH: str = ""
    WEBHOOK_PUBLIC_KEY_PATH: str = ""
    WEBHOOK_PRIVATE_KEY_PATH: str = ""
    COGNITO_PUBLIC_KEY_PATH: str = ""

    # ----------------------------
    # Machine-to-machine trust
    # ----------------------------
    WEBHOOK_SIG_HEADER: str = "x-dreamup-signature"
    COGNITO_SIG_HEADER: str = "x-cognito-signature"
    COGNITO_USER_POOL_ID: str = ""
    COGNITO_TRIGGER_SOURCE: str = "PostConfirmation_ConfirmSignUp"

    # ----------------------------
    # Sessions / cookies
    # ----------------------------
    SESSION_DURATION_SECONDS: int = 24 * 3600
    SESSION_COOKIE_NAME: str = "dreamup_session"
    IDP_COOKIE_NAME: str = "dreamup_idp"
    IDP_COOKIE_MAX_AGE_DAYS: int = 30
    COOKIE_SECURE: bool = True
    COOKIE_DOMAIN: str | None = None
    DEFAULT_IDP: str = "cognito"

    # ----------------------------
    # OAuth providers
    # ----------------------------
    PUBLIC_BASE_URL: str = "http://localhost:3000"
    ALLOWED_REDIRECT_HOSTS: list[str] = field(default_factory=list)
    OAUTH_STATE_TTL_SECONDS: int = 600
    OAUTH_NONCE_COOKIE_NAME: str = "dreamup_oauth_nonce"
    OAUTH_VERIFY_ID_TOKENS: bool = False
    COGNITO_CLIENT_ID: str = ""
    COGNITO_CLIENT_SECRET: str = ""
    COGNITO_DOMAIN: str = ""
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    DISCORD_CLIENT_ID: str = ""
    DISCORD_CLIENT_SECRET: str = ""

    # ----------------------------
    # AWS collaborators
    # ----------------------------
    AWS_REGION: str = "us-east-1"
    DYNAMODB_ENDPOINT: str | None = None
    SQS_ENDPOINT: str | None = None
    COGNITO_IDP_ENDPOINT: str | None = None
    USER_TABLE: str = "users"
    SD_Q_PREFIX: str = "sd-jobs_"
    DIRECTORY_BACKEND: str = "dynamodb"  # dynamodb | memory

    # ----------------------------
    # Outbound calls / side effects
    # ----------------------------
    OUTBOUND_TIMEOUT_SECONDS: float = 10.0
    WEBHOOK_EVENTS: dict[str, list[str]] = field(default_factory=dict)
    SIDE_EFFECT_MAX_ATTEMPTS: int = 3
    SIDE_EFFECT_BASE_DELAY_SECONDS: float = 0.5

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def cognito_issuer(self) -> str:
        if not self.COGNITO_USER_POOL_ID:
            return ""
        return f"https://cognito-idp.{self.AWS_REGION}.amazonaws.com/{self.COGNITO_USER_POOL_ID}"

    @property
    def cognito_jwks_url(self) -> str:
        issuer = self.cognito_issuer
        return f"{issuer}/.well-known/jwks.json" if issuer else ""

    @property
    def idp_cookie_max_age_seconds(self) -> int:
        return self.IDP_COOKIE_MAX_AGE_DAYS * 86400

    def redirect_hosts(self) -> set[str]:
        hosts = {h.lower() for h in self.ALLOWED_REDIRECT_HOSTS}
        public_host = urlparse(self.PUBLIC_BASE_URL).hostname
        if public_host:
            hosts.add(public_host.lower())
        return hosts

    def validate(self) -> None:
        """Fail fast on configuration the service cannot safely run with."""
        missing: list[str] = []
        for name in (
            "SESSION_PUBLIC_KEY_PATH",
            "SESSION_PRIVATE_KEY_PATH",
            "WEBHOOK_PUBLIC_KEY_PATH",
            "WEBHOOK_PRIVATE_KEY_PATH",
            "COGNITO_PUBLIC_KEY_PATH",
            "COGNITO_USER_POOL_ID",
        ):
            if not getattr(self, name):
                missing.append(name)
        if missing:
            raise RuntimeError(f"Missing required env vars: {', '.join(missing)}")

        if self.DIRECTORY_BACKEND not in {"dynamodb", "memory"}:
            raise RuntimeError("DIRECTORY_BACKEND must be 'dynamodb' or 'memory'")

        if self.is_prod:
            self._validate_prod()

    def _validate_prod(self) -> None:
        if not self.COOKIE_SECURE:
            raise RuntimeError("COOKIE_SECURE must be enabled in prod")
        if not self.PUBLIC_BASE_URL.startswith("https://"):
            raise RuntimeError("PUBLIC_BASE_URL should be https://... in prod")
        if self.DIRECTORY_BACKEND == "memory":
            raise RuntimeError("DIRECTORY_BACKEND=memory is not allowed in prod")

        cors_joined = ",".join(self.CORS_ORIGINS)
        if "localhost" in cors_joined or "127.0.0.1" in cors_joined:
            raise RuntimeError("CORS_ORIGINS contains localhost/dev origins in prod")


_WEBHOOK_ENV_EVENTS = {
    "WEBHOOK_USER_CREATE": "user.created",
    "WEBHOOK_USER_UPDATE": "user.updated",
    "WEBHOOK_USER_DELETE": "user.deleted",
}


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from environment variables.

    When ``environ`` is omitted the process environment is used, and a local
    ``.env`` file is loaded first outside of prod.
    """
    if environ is None:
        # Load .env only for non-prod so prod can't be accidentally influenced by local files.
        if os.getenv("ENV", "dev").strip().lower() != "prod":
            load_dotenv()
        environ = os.environ

    def get(name: str, default: str = "") -> str:
        return (environ.get(name) or default).strip()

    env = get("ENV", "dev").lower()

    cors_from_env = parse_csv(environ.get("CORS_ORIGINS"))
    if env == "prod":
        cors = merge_unique(cors_from_env)
    else:
        cors = merge_unique(cors_from_env + ["http://localhost:3000", "http://127.0.0.1:3000"])

    webhook_events: dict[str, list[str]] = {}
    for var, event in _WEBHOOK_ENV_EVENTS.items():
        urls = parse_csv(environ.get(var))
        if urls:
            webhook_events[event] = urls

    settings = Settings(
        ENV=env,
        LOG_LEVEL=get("LOG_LEVEL", "INFO").upper(),
        CORS_ORIGINS=cors,
        SESSION_PUBLIC_KEY_PATH=get("SESSION_PUBLIC_KEY_PATH"),
        SESSION_PRIVATE_KEY_PATH=get("SESSION_PRIVATE_KEY_PATH"),
        WEBHOOK_PUBLIC_KEY_PATH=get("WEBHOOK_PUBLIC_KEY_PATH"),
        WEBHOOK_PRIVATE_KEY_PATH=get("WEBHOOK_PRIVATE_KEY_PATH"),
        COGNITO_PUBLIC_KEY_PATH=get("COGNITO_PUBLIC_KEY_PATH"),
        WEBHOOK_SIG_HEADER=get("WEBHOOK_SIG_HEADER", "x-dreamup-signature").lower(),
        COGNITO_SIG_HEADER=get("COGNITO_SIG_HEADER", "x-cognito-signature").lower(),
        COGNITO_USER_POOL_ID=get("COGNITO_USER_POOL_ID"),
        COGNITO_TRIGGER_SOURCE=get("COGNITO_TRIGGER_SOURCE", "PostConfirmation_ConfirmSignUp"),
        SESSION_DURATION_SECONDS=parse_duration(get("SESSION_DURATION", "24h")),
        SESSION_COOKIE_NAME=get("SESSION_COOKIE_NAME", "dreamup_session"),
        IDP_COOKIE_NAME=get("IDP_COOKIE_NAME", "dreamup_idp"),
        IDP_COOKIE_MAX_AGE_DAYS=int(get("IDP_COOKIE_MAX_AGE_DAYS", "30")),
        # Dev http://localhost can't carry Secure cookies, prod must.
        COOKIE_SECURE=str_to_bool(environ.get("COOKIE_SECURE"), default=env == "prod"),
        COOKIE_DOMAIN=get("COOKIE_DOMAIN") or None,
        DEFAULT_IDP=get("DEFAULT_IDP", "cognito").lower(),
        PUBLIC_BASE_URL=get("PUBLIC_BASE_URL", "http://localhost:3000").rstrip("/"),
        ALLOWED_REDIRECT_HOSTS=parse_csv(environ.get("ALLOWED_REDIRECT_HOSTS")),
        OAUTH_STATE_TTL_SECONDS=int(get("OAUTH_STATE_TTL_SECONDS", "600")),
        OAUTH_NONCE_COOKIE_NAME=get("OAUTH_NONCE_COOKIE_NAME", "dreamup_oauth_nonce"),
        OAUTH_VERIFY_ID_TOKENS=str_to_bool(environ.get("OAUTH_VERIFY_ID_TOKENS")),
        COGNITO_CLIENT_ID=get("COGNITO_CLIENT_ID"),
        COGNITO_CLIENT_SECRET=get("COGNITO_CLIENT_SECRET"),
        COGNITO_DOMAIN=get("COGNITO_DOMAIN").rstrip("/"),
        GOOGLE_CLIENT_ID=get("GOOGLE_CLIENT_ID"),
        GOOGLE_CLIENT_SECRET=get("GOOGLE_CLIENT_SECRET"),
        DISCORD_CLIENT_ID=get("DISCORD_CLIENT_ID"),
        DISCORD_CLIENT_SECRET=get("DISCORD_CLIENT_SECRET"),
        AWS_REGION=get("AWS_REGION") or get("AWS_DEFAULT_REGION") or "us-east-1",
        DYNAMODB_ENDPOINT=get("DYNAMODB_ENDPOINT") or None,
        SQS_ENDPOINT=get("SQS_ENDPOINT") or None,
        COGNITO_IDP_ENDPOINT=get("COGNITO_IDP_ENDPOINT") or None,
        USER_TABLE=get("USER_TABLE", "users"),
        SD_Q_PREFIX=get("SD_Q_PREFIX", "sd-jobs_"),
        DIRECTORY_BACKEND=get("DIRECTORY_BACKEND", "dynamodb").lower(),
        OUTBOUND_TIMEOUT_SECONDS=float(get("OUTBOUND_TIMEOUT_SECONDS", "10")),
        WEBHOOK_EVENTS=webhook_events,
        SIDE_EFFECT_MAX_ATTEMPTS=int(get("SIDE_EFFECT_MAX_ATTEMPTS", "3")),
        SIDE_EFFECT_BASE_DELAY_SECONDS=float(get("SIDE_EFFECT_BASE_DELAY_SECONDS", "0.5")),
    )
    settings.validate()
    return settings
