from __future__ import annotations

import pytest
from fastapi import Request

from identity_api.auth.identity import Principal
from identity_api.auth.sessions import SessionIssuer


@pytest.fixture()
def user(directory):
    record = {
        "id": "user-1",
        "email": "a@example.com",
        "created": 1700000000000,
        "preferences": {"width": 512, "height": 512},
        "features": {},
        "_queue": "sd-jobs_user-1",
    }
    directory.create(record)
    return record


@pytest.fixture()
def good_token(services, user):
    return services.sessions.issue(user["id"], "session-1")


@pytest.fixture()
def foreign_token(keys, clock, user):
    return SessionIssuer(keys.webhook, clock=clock).issue(user["id"], "session-1")


# ---------------------------------------------------------------------------
# NoCredential / CookiePresented / BearerPresented x Valid / Invalid
# ---------------------------------------------------------------------------


def test_no_credential_redirects_to_default_login(client):
    res = client.get("/user/me?tab=prefs", follow_redirects=False)
    assert res.status_code == 307
    assert res.headers["location"] == "/login/cognito?redirect=%2Fuser%2Fme%3Ftab%3Dprefs"


def test_bad_cookie_redirects_without_detail(client, settings, foreign_token):
    client.cookies.set(settings.SESSION_COOKIE_NAME, foreign_token)
    res = client.get("/user/me", follow_redirects=False)
    assert res.status_code == 307
    assert res.headers["location"].startswith("/login/cognito?")
    assert res.content == b""


def test_good_cookie_is_authenticated(client, settings, good_token):
    client.cookies.set(settings.SESSION_COOKIE_NAME, good_token)
    res = client.get("/user/me", follow_redirects=False)
    assert res.status_code == 200
    body = res.json()
    assert body["id"] == "user-1"
    assert "_queue" not in body


def test_bad_bearer_is_401(client, foreign_token):
    res = client.get("/user/me", headers={"Authorization": f"Bearer {foreign_token}"}, follow_redirects=False)
    assert res.status_code == 401
    assert res.json()["code"] == "SESSION_BAD_SIGNATURE"


def test_good_bearer_is_authenticated(client, good_token):
    res = client.get("/user/me", headers={"Authorization": f"Bearer {good_token}"})
    assert res.status_code == 200
    assert res.json()["email"] == "a@example.com"


def test_non_bearer_authorization_is_401(client, good_token):
    res = client.get("/user/me", headers={"Authorization": f"Basic {good_token}"}, follow_redirects=False)
    assert res.status_code == 401
    assert res.json()["error"] == "Invalid authorization type"


# ---------------------------------------------------------------------------
# Details
# ---------------------------------------------------------------------------


def test_expired_bearer_reports_expiry(client, good_token, clock, settings):
    clock.advance(settings.SESSION_DURATION_SECONDS + 1)
    res = client.get("/user/me", headers={"Authorization": f"Bearer {good_token}"})
    assert res.status_code == 401
    assert res.json()["code"] == "SESSION_EXPIRED"


def test_expired_cookie_redirects(client, good_token, clock, settings):
    clock.advance(settings.SESSION_DURATION_SECONDS + 1)
    client.cookies.set(settings.SESSION_COOKIE_NAME, good_token)
    res = client.get("/user/me", follow_redirects=False)
    assert res.status_code == 307


def test_bearer_wins_over_cookie(client, settings, good_token, foreign_token):
    client.cookies.set(settings.SESSION_COOKIE_NAME, good_token)
    res = client.get("/user/me", headers={"Authorization": f"Bearer {foreign_token}"}, follow_redirects=False)
    assert res.status_code == 401


def test_redirect_uses_last_idp_cookie(client, settings):
    client.cookies.set(settings.IDP_COOKIE_NAME, "google")
    res = client.get("/user/me", follow_redirects=False)
    assert res.headers["location"].startswith("/login/google?")


def test_unknown_idp_cookie_falls_back_to_default(client, settings):
    client.cookies.set(settings.IDP_COOKIE_NAME, "evil.example.com")
    res = client.get("/user/me", follow_redirects=False)
    assert res.headers["location"].startswith("/login/cognito?")


def test_valid_token_for_deleted_user_is_401(client, good_token, directory):
    directory.delete("user-1")
    res = client.get("/user/me", headers={"Authorization": f"Bearer {good_token}"})
    assert res.status_code == 401


def test_bearer_principal_is_attached_to_request(services, good_token, clock, settings):
    request = Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/user/me",
            "query_string": b"",
            "headers": [(b"authorization", f"Bearer {good_token}".encode())],
        }
    )

    principal = services.session_auth(request)

    assert principal == Principal(
        user_id="user-1",
        session_id="session-1",
        source="bearer",
        expires_at=int(clock().timestamp()) + settings.SESSION_DURATION_SECONDS,
    )
    assert request.state.principal is principal
