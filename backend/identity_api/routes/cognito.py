# identity_api/routes/cognito.py
"""
Cognito PostConfirmation trigger callback.

The trigger Lambda signs the event it received and forwards it here. The
confirmed Cognito identity is reconciled onto a canonical user:

    201  new user created
    200  identity linked to the existing user with this email
    409  this Cognito identity is already linked
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from identity_api.core.errors import UserExistsError
from identity_api.dependencies.auth import require_cognito_trigger
from identity_api.dependencies.container import Services, get_scheduler, get_services
from identity_api.schemas.cognito import CognitoTriggerPayload
from identity_api.services.side_effects import Scheduler
from identity_api.services.users import ReconcileOutcome

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cognito"])


@router.post("/user/cognito", status_code=201, dependencies=[Depends(require_cognito_trigger)])
def cognito_post_confirmation(
    payload: CognitoTriggerPayload,
    services: Services = Depends(get_services),
    scheduler: Scheduler = Depends(get_scheduler),
):
    attributes = payload.request.userAttributes
    result = services.reconciler.reconcile_by_provider_identity(
        "cognito",
        attributes.sub,
        attributes.email,
        scheduler=scheduler,
    )
    if result.outcome is ReconcileOutcome.EXISTING:
        raise UserExistsError()

    if services.cognito_admin is not None:
        username = payload.userName or str(attributes.sub)
        scheduler.schedule(
            f"cognito user id attribute for {username}",
            services.cognito_admin.set_user_id,
            username,
            result.user.id,
        )

    status_code = 201 if result.outcome is ReconcileOutcome.CREATED else 200
    return JSONResponse(status_code=status_code, content=result.user.to_record())
