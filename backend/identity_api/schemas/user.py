from __future__ import annotations

from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, EmailStr, Field

USERNAME_PATTERN = r"^[a-zA-Z0-9_\-.]+$"
QUEUE_FIELD = "_queue"
DEFAULT_PREFERENCES: dict[str, Any] = {"width": 512, "height": 512}


def provider_link_field(provider: str) -> str:
    """Directory attribute holding the subject id a provider asserted for a user."""
    return f"idp:{provider}:id"


def _provider_from_field(name: str) -> str | None:
    parts = name.split(":")
    if len(parts) == 3 and parts[0] == "idp" and parts[2] == "id" and parts[1]:
        return parts[1]
    return None


class UserPreferences(BaseModel):
    """Application defaults as configured by the user."""

    width: int = Field(default=512, ge=64, le=1024, multiple_of=8)
    height: int = Field(default=512, ge=64, le=1024, multiple_of=8)
    model: str | None = None
    prompt: str | None = None
    negative_prompt: str | None = None
    collection_sort_order: Literal["asc", "desc"] | None = None


class AppFeatures(BaseModel):
    """Features that can be toggled per-user."""

    large_start_image: bool | None = None


class UserUpdateIn(BaseModel):
    username: str | None = Field(default=None, min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    preferences: UserPreferences | None = None

    def to_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if self.username is not None:
            fields["username"] = self.username
        if self.preferences is not None:
            fields["preferences"] = self.preferences.model_dump(exclude_none=True)
        return fields


class SystemUserUpdateIn(UserUpdateIn):
    """The system-updatable fields of a user."""

    features: AppFeatures | None = None

    def to_fields(self) -> dict[str, Any]:
        fields = super().to_fields()
        if self.features is not None:
            fields["features"] = self.features.model_dump(exclude_none=True)
        return fields


class CreateUserIn(SystemUserUpdateIn):
    email: EmailStr


class ReconcileExtras(BaseModel):
    """
    The closed set of extra attributes a login/trigger may attach to a user.

    Anything not listed here is rejected at the boundary rather than written
    to the directory.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    username: str | None = Field(default=None, min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    terms_accepted_at: int | None = Field(default=None, ge=0, description="Epoch milliseconds")

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CanonicalUser(BaseModel):
    """
    The single internal user record all external identities reconcile to.

    Stored flat in the directory: provider links live under ``idp:<provider>:id``
    attributes and the user's job queue under ``_queue``.
    """

    id: str
    email: str
    created: int
    preferences: dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_PREFERENCES))
    features: dict[str, Any] = Field(default_factory=dict)
    username: str | None = None
    terms_accepted_at: int | None = None
    provider_links: dict[str, str] = Field(default_factory=dict)
    queue: str | None = None

    def provider_subject(self, provider: str) -> str | None:
        return self.provider_links.get(provider)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> CanonicalUser:
        links = {}
        for key, value in record.items():
            provider = _provider_from_field(key)
            if provider and value is not None:
                links[provider] = str(value)

        return cls(
            id=str(record["id"]),
            email=str(record["email"]),
            created=int(record.get("created") or 0),
            preferences=dict(record.get("preferences") or DEFAULT_PREFERENCES),
            features=dict(record.get("features") or {}),
            username=record.get("username"),
            terms_accepted_at=record.get("terms_accepted_at"),
            provider_links=links,
            queue=record.get(QUEUE_FIELD),
        )

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "id": self.id,
            "email": self.email,
            "created": self.created,
            "preferences": dict(self.preferences),
            "features": dict(self.features),
        }
        if self.username is not None:
            record["username"] = self.username
        if self.terms_accepted_at is not None:
            record["terms_accepted_at"] = self.terms_accepted_at
        for provider, subject in sorted(self.provider_links.items()):
            record[provider_link_field(provider)] = subject
        if self.queue is not None:
            record[QUEUE_FIELD] = self.queue
        return record

    def to_public(self) -> dict[str, Any]:
        record = self.to_record()
        record.pop(QUEUE_FIELD, None)
        return record


class DeletedOut(BaseModel):
    deleted: bool = True
    id: str
