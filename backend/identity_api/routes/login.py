# identity_api/routes/login.py
"""
Browser login routes.

GET /login/{provider}?redirect=...        -> 307 to the provider's authorize URL
GET /login/{provider}/callback?code&state -> session + idp cookies, 302 to redirect
POST /logout                              -> clears the session cookie
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from identity_api.core.config import Settings
from identity_api.dependencies.container import Services, get_scheduler, get_services
from identity_api.services.side_effects import Scheduler

router = APIRouter(tags=["login"])


# ----------------------------
# Cookie helpers
# ----------------------------


def _cookie_kwargs(settings: Settings) -> dict:
    kwargs: dict = {"httponly": True, "secure": settings.COOKIE_SECURE, "samesite": "lax", "path": "/"}
    if settings.COOKIE_DOMAIN:
        kwargs["domain"] = settings.COOKIE_DOMAIN
    return kwargs


def set_session_cookie(resp: Response, settings: Settings, token: str, max_age: int) -> None:
    resp.set_cookie(key=settings.SESSION_COOKIE_NAME, value=token, max_age=max_age, **_cookie_kwargs(settings))


def set_idp_cookie(resp: Response, settings: Settings, provider: str) -> None:
    resp.set_cookie(
        key=settings.IDP_COOKIE_NAME,
        value=provider,
        max_age=settings.idp_cookie_max_age_seconds,
        **_cookie_kwargs(settings),
    )


def set_nonce_cookie(resp: Response, settings: Settings, nonce: str) -> None:
    resp.set_cookie(
        key=settings.OAUTH_NONCE_COOKIE_NAME,
        value=nonce,
        max_age=settings.OAUTH_STATE_TTL_SECONDS,
        **_cookie_kwargs(settings),
    )


def clear_cookie(resp: Response, settings: Settings, name: str) -> None:
    resp.delete_cookie(key=name, path="/", domain=settings.COOKIE_DOMAIN or None)


# ----------------------------
# Routes
# ----------------------------


@router.get("/login/{provider}")
def start_login(
    provider: str,
    redirect: str | None = Query(default=None),
    services: Services = Depends(get_services),
) -> RedirectResponse:
    start = services.login_flow.start(provider, redirect)
    resp = RedirectResponse(start.location, status_code=307)
    set_nonce_cookie(resp, services.settings, start.nonce)
    return resp


@router.get("/login/{provider}/callback")
def login_callback(
    provider: str,
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    services: Services = Depends(get_services),
    scheduler: Scheduler = Depends(get_scheduler),
) -> RedirectResponse:
    settings = services.settings
    completion = services.login_flow.complete(
        provider,
        code,
        state,
        request.cookies.get(settings.OAUTH_NONCE_COOKIE_NAME),
        scheduler=scheduler,
    )

    resp = RedirectResponse(completion.redirect, status_code=302)
    set_session_cookie(resp, settings, completion.session_token, services.sessions.duration_seconds)
    set_idp_cookie(resp, settings, completion.provider)
    clear_cookie(resp, settings, settings.OAUTH_NONCE_COOKIE_NAME)
    return resp


@router.post("/logout")
def logout(response: Response, services: Services = Depends(get_services)) -> dict:
    clear_cookie(response, services.settings, services.settings.SESSION_COOKIE_NAME)
    return {"message": "Logged out"}
