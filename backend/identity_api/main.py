import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException

from identity_api.core.config import Settings, load_settings
from identity_api.core.errors import IdentityError, LoginRequired
from identity_api.dependencies.container import Services, build_services
from identity_api.middleware.request_id import register_request_id_middleware
from identity_api.routes.cognito import router as cognito_router
from identity_api.routes.health import router as health_router
from identity_api.routes.login import router as login_router
from identity_api.routes.users import router as users_router
from identity_api.routes.well_known import router as well_known_router

logger = logging.getLogger(__name__)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def identity_error_handler(request: Request, exc: IdentityError):
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed with %s (request_id=%s)",
            request.method,
            request.url.path,
            exc.code,
            _request_id(request),
            exc_info=exc,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def login_required_handler(request: Request, exc: LoginRequired):  # noqa: ARG001
    return RedirectResponse(exc.location, status_code=307)


def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message, "code": _error_code(exc.status_code)},
        headers=getattr(exc, "headers", None),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request payload")
    return JSONResponse(
        status_code=400,
        content={
            "error": f"{location}: {message}" if location else message,
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_errors(errors)},
        },
    )


def jsonable_errors(errors: list) -> list:
    # pydantic error contexts may carry exception instances.
    out = []
    for err in errors:
        item = {k: v for k, v in err.items() if k in {"type", "loc", "msg"}}
        out.append(item)
    return out


def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error on %s %s (request_id=%s)",
        request.method,
        request.url.path,
        _request_id(request),
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "INTERNAL_ERROR"})


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or (services.settings if services else load_settings())
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))

    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        services.close()

    app = FastAPI(title="User Identity Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services

    logger.info(
        "Startup config: ENV=%s providers=%s directory=%s webhook_events=%s",
        settings.ENV,
        ",".join(sorted(services.login_flow.providers)) or "none",
        settings.DIRECTORY_BACKEND,
        ",".join(sorted(settings.WEBHOOK_EVENTS)) or "none",
    )

    app.add_exception_handler(IdentityError, identity_error_handler)
    app.add_exception_handler(LoginRequired, login_required_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_request_id_middleware(app)

    app.include_router(health_router)
    app.include_router(well_known_router)
    app.include_router(login_router)
    app.include_router(cognito_router)
    app.include_router(users_router)

    return app
