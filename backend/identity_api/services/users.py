# identity_api/services/users.py
"""
User reconciliation and management.

Responsibilities:
- Map a (provider, subject, email) triple onto exactly one canonical user
- Strict creates for the trusted internal system
- Updates / deletes, with their lifecycle webhooks and queue side effects

Reconciliation order is fixed: provider link lookup, then email lookup, then
create or update. The directory's conditional create is the only
serialization point between concurrent reconciliations for the same email;
losing that race folds into the link path.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from identity_api.core.errors import (
    DownstreamCreateError,
    IdentityConflictError,
    UserExistsError,
    UserNotFoundError,
)
from identity_api.schemas.user import (
    DEFAULT_PREFERENCES,
    CanonicalUser,
    ReconcileExtras,
    provider_link_field,
)
from identity_api.services.directory import UserAlreadyExistsError, UserDirectory
from identity_api.services.queues import QueueProvisioner
from identity_api.services.side_effects import Scheduler
from identity_api.services.webhooks import USER_CREATED, USER_DELETED, USER_UPDATED, WebhookSender


logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if not normalized:
        raise ValueError("email is required")
    return normalized


def normalize_subject(subject: str | int) -> str:
    """Provider subject ids may arrive as numbers; the directory only keys on strings."""
    if isinstance(subject, bool) or subject is None:
        raise ValueError("provider subject is required")
    normalized = str(subject).strip()
    if not normalized:
        raise ValueError("provider subject is required")
    return normalized


class ReconcileOutcome(str, Enum):
    EXISTING = "existing"  # provider link already present, nothing written
    LINKED = "linked"  # provider link attached to the user with this email
    CREATED = "created"  # new user


@dataclass(frozen=True)
class ReconcileResult:
    user: CanonicalUser
    outcome: ReconcileOutcome


class IdentityReconciler:
    def __init__(
        self,
        directory: UserDirectory,
        queues: QueueProvisioner,
        webhooks: WebhookSender | None = None,
        *,
        queue_prefix: str = "sd-jobs_",
        clock_ms: Callable[[], int] = _now_ms,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.directory = directory
        self.queues = queues
        self.webhooks = webhooks
        self.queue_prefix = queue_prefix
        self._clock_ms = clock_ms
        self._id_factory = id_factory

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> CanonicalUser:
        record = self.directory.get_by_field("id", user_id)
        if record is None:
            raise UserNotFoundError()
        return CanonicalUser.from_record(record)

    def find_by_provider(self, provider: str, subject: str | int) -> CanonicalUser | None:
        record = self.directory.get_by_field(provider_link_field(provider), normalize_subject(subject))
        return CanonicalUser.from_record(record) if record else None

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_by_provider_identity(
        self,
        provider: str,
        subject: str | int,
        email: str,
        extras: ReconcileExtras | None = None,
        *,
        scheduler: Scheduler,
    ) -> ReconcileResult:
        subject = normalize_subject(subject)
        email = normalize_email(email)
        extras = extras or ReconcileExtras()

        existing = self.find_by_provider(provider, subject)
        if existing is not None:
            logger.debug("Provider identity %s:%s already linked to %s", provider, subject, existing.id)
            return ReconcileResult(existing, ReconcileOutcome.EXISTING)

        record = self.directory.get_by_field("email", email)
        if record is not None:
            return self._link(record, provider, subject, extras, scheduler)

        user = self._new_user(email, extras.to_fields())
        user.provider_links[provider] = subject
        try:
            self._create(user)
        except UserAlreadyExistsError:
            logger.info("Lost create race for %s, linking %s identity instead", email, provider)
            record = self.directory.resolve_email(email)
            if record is None:
                raise DownstreamCreateError()
            return self._link(record, provider, subject, extras, scheduler)

        logger.info("Created user %s via %s", user.id, provider)
        self._after_create(user, scheduler)
        return ReconcileResult(user, ReconcileOutcome.CREATED)

    def _link(
        self,
        record: dict[str, Any],
        provider: str,
        subject: str,
        extras: ReconcileExtras,
        scheduler: Scheduler,
    ) -> ReconcileResult:
        current = CanonicalUser.from_record(record)
        linked = current.provider_subject(provider)
        if linked is not None and linked != subject:
            logger.warning(
                "User %s is linked to a different %s identity, refusing to relink",
                current.id,
                provider,
            )
            raise IdentityConflictError()

        fields = {provider_link_field(provider): subject, **extras.to_fields()}
        updated = self.directory.update(current.id, fields)
        if updated is None:
            raise DownstreamCreateError()

        user = CanonicalUser.from_record(updated)
        logger.info("Linked %s identity to user %s", provider, user.id)
        self._emit(USER_UPDATED, user, scheduler)
        return ReconcileResult(user, ReconcileOutcome.LINKED)

    # ------------------------------------------------------------------
    # Trusted internal operations
    # ------------------------------------------------------------------

    def create_user_strict(self, email: str, fields: dict[str, Any], *, scheduler: Scheduler) -> CanonicalUser:
        """Create a user for the internal system. An existing email is a conflict, never a merge."""
        email = normalize_email(email)
        if self.directory.get_by_field("email", email) is not None:
            raise UserExistsError()

        user = self._new_user(email, fields)
        try:
            self._create(user)
        except UserAlreadyExistsError as exc:
            raise UserExistsError() from exc

        logger.info("Created user %s via internal system", user.id)
        self._after_create(user, scheduler)
        return user

    def update_user(self, user_id: str, fields: dict[str, Any], *, scheduler: Scheduler) -> CanonicalUser:
        updated = self.directory.update(user_id, fields)
        if updated is None:
            raise UserNotFoundError()
        user = CanonicalUser.from_record(updated)
        if fields:
            self._emit(USER_UPDATED, user, scheduler)
        return user

    def delete_user(self, user_id: str, *, scheduler: Scheduler) -> CanonicalUser:
        deleted = self.directory.delete(user_id)
        if deleted is None:
            raise UserNotFoundError()
        user = CanonicalUser.from_record(deleted)
        logger.info("Deleted user %s", user.id)
        if user.queue:
            scheduler.schedule(f"delete queue {user.queue}", self.queues.delete_queue, user.queue)
        self._emit(USER_DELETED, user, scheduler)
        return user

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_user(self, email: str, fields: dict[str, Any]) -> CanonicalUser:
        user_id = self._id_factory()
        data: dict[str, Any] = {
            "id": user_id,
            "email": email,
            "created": self._clock_ms(),
            "preferences": dict(DEFAULT_PREFERENCES),
            "features": {},
            "queue": f"{self.queue_prefix}{user_id}",
        }
        data.update(fields)
        return CanonicalUser(**data)

    def _create(self, user: CanonicalUser) -> None:
        try:
            self.directory.create(user.to_record())
        except UserAlreadyExistsError:
            raise
        except Exception as exc:
            logger.exception("Directory create failed for %s", user.email)
            raise DownstreamCreateError() from exc

    def _after_create(self, user: CanonicalUser, scheduler: Scheduler) -> None:
        if user.queue:
            scheduler.schedule(f"create queue {user.queue}", self.queues.create_queue, user.queue)
        self._emit(USER_CREATED, user, scheduler)

    def _emit(self, event: str, user: CanonicalUser, scheduler: Scheduler) -> None:
        if self.webhooks is not None:
            self.webhooks.send(event, user.to_record(), scheduler)
