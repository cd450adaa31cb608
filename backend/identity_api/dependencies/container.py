# identity_api/dependencies/container.py
"""
Service wiring.

Everything the routes need is built once from ``Settings`` in
``build_services`` and stored on ``app.state.services``. Tests pass their
own collaborators (in-memory directory, mock HTTP transport, ...) instead
of patching module globals.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

import boto3
import httpx
from fastapi import BackgroundTasks, Request

from identity_api.auth.session_gate import SessionAuthenticator, make_session_authenticator
from identity_api.auth.sessions import Clock, SessionIssuer, _now_utc
from identity_api.auth.sources import CognitoTriggerValidator, SourceAuthenticator, make_source_authenticator
from identity_api.core.config import Settings
from identity_api.core.keys import KeyStore
from identity_api.services.cognito_client import CognitoAdminClient
from identity_api.services.directory import DynamoUserDirectory, InMemoryUserDirectory, UserDirectory
from identity_api.services.login_flow import ProviderFlowOrchestrator
from identity_api.services.providers import OAuthProvider, build_providers
from identity_api.services.queues import InMemoryQueueProvisioner, QueueProvisioner, SqsQueueProvisioner
from identity_api.services.side_effects import BackgroundScheduler, Scheduler
from identity_api.services.users import IdentityReconciler
from identity_api.services.webhooks import WebhookSender


logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    keys: KeyStore
    directory: UserDirectory
    queues: QueueProvisioner
    webhooks: WebhookSender
    reconciler: IdentityReconciler
    sessions: SessionIssuer
    login_flow: ProviderFlowOrchestrator
    cognito_admin: CognitoAdminClient | None
    internal_auth: SourceAuthenticator
    cognito_auth: SourceAuthenticator
    cognito_trigger: CognitoTriggerValidator
    session_auth: SessionAuthenticator
    http_client: httpx.Client

    def scheduler(self, background_tasks: BackgroundTasks) -> Scheduler:
        return BackgroundScheduler(
            background_tasks,
            max_attempts=self.settings.SIDE_EFFECT_MAX_ATTEMPTS,
            base_delay=self.settings.SIDE_EFFECT_BASE_DELAY_SECONDS,
        )

    def close(self) -> None:
        self.http_client.close()


def _aws_client(service: str, settings: Settings, endpoint: str | None):
    return boto3.client(service, region_name=settings.AWS_REGION, endpoint_url=endpoint)


def build_services(
    settings: Settings,
    *,
    keys: KeyStore | None = None,
    directory: UserDirectory | None = None,
    queues: QueueProvisioner | None = None,
    cognito_admin: CognitoAdminClient | None = None,
    http_client: httpx.Client | None = None,
    providers: Mapping[str, OAuthProvider] | None = None,
    clock: Clock = _now_utc,
) -> Services:
    keys = keys or KeyStore.from_settings(settings)
    http_client = http_client or httpx.Client(timeout=settings.OUTBOUND_TIMEOUT_SECONDS)
    in_memory = settings.DIRECTORY_BACKEND == "memory"

    if directory is None:
        if in_memory:
            directory = InMemoryUserDirectory()
        else:
            directory = DynamoUserDirectory(
                _aws_client("dynamodb", settings, settings.DYNAMODB_ENDPOINT),
                settings.USER_TABLE,
            )

    if queues is None:
        if in_memory:
            queues = InMemoryQueueProvisioner()
        else:
            queues = SqsQueueProvisioner(_aws_client("sqs", settings, settings.SQS_ENDPOINT))

    if cognito_admin is None and not in_memory:
        cognito_admin = CognitoAdminClient(
            _aws_client("cognito-idp", settings, settings.COGNITO_IDP_ENDPOINT),
            settings.COGNITO_USER_POOL_ID,
        )

    webhooks = WebhookSender(
        settings.WEBHOOK_EVENTS,
        keys.webhook,
        settings.WEBHOOK_SIG_HEADER,
        http_client=http_client,
        timeout=settings.OUTBOUND_TIMEOUT_SECONDS,
    )
    reconciler = IdentityReconciler(directory, queues, webhooks, queue_prefix=settings.SD_Q_PREFIX)
    sessions = SessionIssuer(keys.session, settings.SESSION_DURATION_SECONDS, clock=clock)

    if providers is None:
        providers = build_providers(settings, http_client)

    login_flow = ProviderFlowOrchestrator(
        providers,
        reconciler,
        sessions,
        keys.session,
        allowed_redirect_hosts=settings.redirect_hosts(),
        state_ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS,
        clock=clock,
    )

    return Services(
        settings=settings,
        keys=keys,
        directory=directory,
        queues=queues,
        webhooks=webhooks,
        reconciler=reconciler,
        sessions=sessions,
        login_flow=login_flow,
        cognito_admin=cognito_admin,
        internal_auth=make_source_authenticator(keys.webhook.public_key, settings.WEBHOOK_SIG_HEADER, name="internal"),
        cognito_auth=make_source_authenticator(keys.cognito.public_key, settings.COGNITO_SIG_HEADER, name="cognito"),
        cognito_trigger=CognitoTriggerValidator(settings.COGNITO_USER_POOL_ID, settings.COGNITO_TRIGGER_SOURCE),
        session_auth=make_session_authenticator(
            sessions,
            cookie_name=settings.SESSION_COOKIE_NAME,
            idp_cookie_name=settings.IDP_COOKIE_NAME,
            default_idp=settings.DEFAULT_IDP,
            known_idps=providers.keys(),
        ),
        http_client=http_client,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_scheduler(request: Request, background_tasks: BackgroundTasks) -> Scheduler:
    return get_services(request).scheduler(background_tasks)
