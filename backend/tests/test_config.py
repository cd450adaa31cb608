from __future__ import annotations

import pytest

from identity_api.core.config import load_settings, parse_duration


@pytest.mark.parametrize(
    "raw,seconds",
    [
        ("86400", 86400),
        ("24h", 86400),
        ("30m", 1800),
        ("7d", 604800),
        ("45 s", 45),
        ("PT24H", 86400),
        ("P1D", 86400),
        ("P1DT12H", 129600),
        ("pt90m", 5400),
        (3600, 3600),
    ],
)
def test_parse_duration(raw, seconds):
    assert parse_duration(raw) == seconds


@pytest.mark.parametrize("raw", ["", "soon", "24x", "-5", "0", "P", 0])
def test_parse_duration_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_defaults(settings):
    assert settings.SESSION_DURATION_SECONDS == 24 * 3600
    assert settings.WEBHOOK_SIG_HEADER == "x-dreamup-signature"
    assert settings.COGNITO_SIG_HEADER == "x-cognito-signature"
    assert settings.COOKIE_SECURE is False
    assert "http://localhost:3000" in settings.CORS_ORIGINS
    assert settings.cognito_issuer == "https://cognito-idp.us-east-1.amazonaws.com/us-east-1_TestPool"


def test_session_duration_from_env(settings_env):
    settings_env["SESSION_DURATION"] = "PT2H"
    assert load_settings(settings_env).SESSION_DURATION_SECONDS == 7200


def test_webhook_events_from_env(settings_env):
    settings_env["WEBHOOK_USER_UPDATE"] = "https://a.example.com/u, https://b.example.com/u"
    settings_env.pop("WEBHOOK_USER_DELETE")

    events = load_settings(settings_env).WEBHOOK_EVENTS

    assert events["user.updated"] == ["https://a.example.com/u", "https://b.example.com/u"]
    assert "user.deleted" not in events


def test_redirect_hosts_include_public_base(settings):
    assert settings.redirect_hosts() == {"app.example.com", "localhost"}


def test_missing_keys_fail_fast(settings_env):
    settings_env.pop("SESSION_PRIVATE_KEY_PATH")
    settings_env.pop("COGNITO_USER_POOL_ID")

    with pytest.raises(RuntimeError) as exc:
        load_settings(settings_env)

    assert "SESSION_PRIVATE_KEY_PATH" in str(exc.value)
    assert "COGNITO_USER_POOL_ID" in str(exc.value)


def test_unknown_directory_backend(settings_env):
    settings_env["DIRECTORY_BACKEND"] = "postgres"
    with pytest.raises(RuntimeError):
        load_settings(settings_env)


@pytest.fixture()
def prod_env(settings_env):
    settings_env.update(
        {
            "ENV": "prod",
            "DIRECTORY_BACKEND": "dynamodb",
            "PUBLIC_BASE_URL": "https://id.example.com",
            "CORS_ORIGINS": "https://app.example.com",
        }
    )
    return settings_env


def test_prod_settings(prod_env):
    settings = load_settings(prod_env)
    assert settings.is_prod
    assert settings.COOKIE_SECURE is True
    assert settings.CORS_ORIGINS == ["https://app.example.com"]


@pytest.mark.parametrize(
    "override",
    [
        {"COOKIE_SECURE": "false"},
        {"PUBLIC_BASE_URL": "http://id.example.com"},
        {"DIRECTORY_BACKEND": "memory"},
        {"CORS_ORIGINS": "http://localhost:3000"},
    ],
)
def test_prod_rejects_unsafe_settings(prod_env, override):
    prod_env.update(override)
    with pytest.raises(RuntimeError):
        load_settings(prod_env)
