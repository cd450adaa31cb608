from __future__ import annotations

from fastapi import APIRouter, Depends, Path

from identity_api.auth.identity import Principal
from identity_api.core.errors import SessionError, UserNotFoundError
from identity_api.dependencies.auth import require_internal_source, require_user_session
from identity_api.dependencies.container import Services, get_scheduler, get_services
from identity_api.schemas.user import CreateUserIn, DeletedOut, SystemUserUpdateIn, UserUpdateIn, provider_link_field
from identity_api.services.side_effects import Scheduler

router = APIRouter(tags=["users"])

internal = [Depends(require_internal_source)]


# ----------------------------
# Session (the user themselves)
# ----------------------------


@router.get("/user/me")
def get_me(
    principal: Principal = Depends(require_user_session),
    services: Services = Depends(get_services),
) -> dict:
    try:
        user = services.reconciler.get_user(principal.user_id)
    except UserNotFoundError as exc:
        # Valid token for a user that no longer exists.
        raise SessionError() from exc
    return user.to_public()


@router.put("/user/me")
def update_me(
    payload: UserUpdateIn,
    principal: Principal = Depends(require_user_session),
    services: Services = Depends(get_services),
    scheduler: Scheduler = Depends(get_scheduler),
) -> dict:
    try:
        user = services.reconciler.update_user(principal.user_id, payload.to_fields(), scheduler=scheduler)
    except UserNotFoundError as exc:
        raise SessionError() from exc
    return user.to_public()


# ----------------------------
# Internal system
# ----------------------------


@router.post("/users", status_code=201, dependencies=internal)
def create_user(
    payload: CreateUserIn,
    services: Services = Depends(get_services),
    scheduler: Scheduler = Depends(get_scheduler),
) -> dict:
    user = services.reconciler.create_user_strict(payload.email, payload.to_fields(), scheduler=scheduler)
    return user.to_record()


@router.get("/user/{id}", dependencies=internal)
def get_user(id: str = Path(min_length=1), services: Services = Depends(get_services)) -> dict:
    return services.reconciler.get_user(id).to_record()


def _lookup_route(field_name: str, normalize=None):
    def lookup(id: str = Path(min_length=1), services: Services = Depends(get_services)) -> dict:
        value = normalize(id) if normalize else id
        record = services.directory.get_by_field(field_name, value)
        if record is None:
            raise UserNotFoundError()
        return record

    return lookup


for _provider in ("cognito", "google", "discord"):
    router.add_api_route(
        f"/user/{{id}}/{_provider}",
        _lookup_route(provider_link_field(_provider)),
        methods=["GET"],
        dependencies=internal,
        name=f"get_user_by_{_provider}_id",
    )

router.add_api_route(
    "/user/{id}/email",
    _lookup_route("email", lambda value: value.strip().lower()),
    methods=["GET"],
    dependencies=internal,
    name="get_user_by_email",
)


@router.put("/user/{id}", dependencies=internal)
def update_user(
    payload: SystemUserUpdateIn,
    id: str = Path(min_length=1),
    services: Services = Depends(get_services),
    scheduler: Scheduler = Depends(get_scheduler),
) -> dict:
    return services.reconciler.update_user(id, payload.to_fields(), scheduler=scheduler).to_record()


@router.delete("/user/{id}", response_model=DeletedOut, dependencies=internal)
def delete_user(
    id: str = Path(min_length=1),
    services: Services = Depends(get_services),
    scheduler: Scheduler = Depends(get_scheduler),
) -> DeletedOut:
    user = services.reconciler.delete_user(id, scheduler=scheduler)
    return DeletedOut(id=user.id)
