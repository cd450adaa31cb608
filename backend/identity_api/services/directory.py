# identity_api/services/directory.py
"""
User directory adapters.

Responsibilities:
- Lookups by id, email or provider link (``idp:<provider>:id``)
- Create with a uniqueness guarantee on email (conditional write, fails closed)
- Partial updates and deletes by id

Records are plain dicts in the wire form described by ``CanonicalUser.to_record``.
"""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.client import BaseClient
from botocore.exceptions import ClientError


logger = logging.getLogger(__name__)

# Field -> global secondary index name
INDEX_BY_FIELD = {
    "email": "email",
    "idp:cognito:id": "cognito_id",
    "idp:google:id": "google_id",
    "idp:discord:id": "discord_id",
}

EMAIL_MARKER_PREFIX = "email#"
_IMMUTABLE_FIELDS = frozenset({"id", "email"})


class UserAlreadyExistsError(Exception):
    """Raised when a create loses the directory's uniqueness check (id or email)."""

    pass


class UserDirectory(Protocol):
    def get_by_field(self, field_name: str, value: str) -> dict[str, Any] | None: ...

    def resolve_email(self, email: str) -> dict[str, Any] | None: ...

    def create(self, record: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, user_id: str, fields: dict[str, Any]) -> dict[str, Any] | None: ...

    def delete(self, user_id: str) -> dict[str, Any] | None: ...


def _is_marker_id(user_id: str) -> bool:
    return user_id.startswith(EMAIL_MARKER_PREFIX)


def _check_update_fields(fields: dict[str, Any]) -> None:
    blocked = _IMMUTABLE_FIELDS.intersection(fields)
    if blocked:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(blocked))}")


# ---------------------------------------------------------------------------
# DynamoDB
# ---------------------------------------------------------------------------

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _to_dynamo_value(value: Any) -> Any:
    # DynamoDB numbers must be Decimal; floats are rejected by TypeSerializer.
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_dynamo_value(v) for v in value]
    return value


def _from_dynamo_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [_from_dynamo_value(v) for v in value]
    return value


def to_item(record: dict[str, Any]) -> dict[str, Any]:
    return {k: _serializer.serialize(_to_dynamo_value(v)) for k, v in record.items()}


def from_item(item: dict[str, Any]) -> dict[str, Any]:
    return {k: _from_dynamo_value(_deserializer.deserialize(v)) for k, v in item.items()}


def _error_code(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Code", "")


def _is_conditional_failure(err: ClientError) -> bool:
    code = _error_code(err)
    if code == "ConditionalCheckFailedException":
        return True
    if code != "TransactionCanceledException":
        return False
    reasons = err.response.get("CancellationReasons") or []
    if any(r.get("Code") == "ConditionalCheckFailed" for r in reasons):
        return True
    return "ConditionalCheckFailed" in err.response.get("Error", {}).get("Message", "")


@dataclass(frozen=True)
class DynamoUserDirectory:
    client: BaseClient
    table_name: str

    def _get_item(self, key: str) -> dict[str, Any] | None:
        response = self.client.get_item(
            TableName=self.table_name,
            Key={"id": {"S": key}},
            ConsistentRead=True,
        )
        item = response.get("Item")
        return from_item(item) if item else None

    def get_by_field(self, field_name: str, value: str) -> dict[str, Any] | None:
        if field_name == "id":
            if _is_marker_id(value):
                return None
            return self._get_item(value)

        index = INDEX_BY_FIELD.get(field_name)
        if index is None:
            raise ValueError(f"No index for field {field_name!r}")

        response = self.client.query(
            TableName=self.table_name,
            IndexName=index,
            KeyConditionExpression="#field = :value",
            ExpressionAttributeNames={"#field": field_name},
            ExpressionAttributeValues={":value": {"S": value}},
            Limit=1,
        )
        items = response.get("Items") or []
        return from_item(items[0]) if items else None

    def resolve_email(self, email: str) -> dict[str, Any] | None:
        """Strongly consistent email lookup through the uniqueness marker."""
        marker = self._get_item(f"{EMAIL_MARKER_PREFIX}{email}")
        if marker is None or not marker.get("user_id"):
            return None
        return self.get_by_field("id", str(marker["user_id"]))

    def create(self, record: dict[str, Any]) -> dict[str, Any]:
        marker = {
            "id": {"S": f"{EMAIL_MARKER_PREFIX}{record['email']}"},
            "user_id": {"S": record["id"]},
        }
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self.table_name,
                            "Item": to_item(record),
                            "ConditionExpression": "attribute_not_exists(id)",
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.table_name,
                            "Item": marker,
                            "ConditionExpression": "attribute_not_exists(id)",
                        }
                    },
                ]
            )
        except ClientError as err:
            if _is_conditional_failure(err):
                raise UserAlreadyExistsError(record["email"]) from err
            raise
        return copy.deepcopy(record)

    def update(self, user_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        _check_update_fields(fields)
        if _is_marker_id(user_id):
            return None
        if not fields:
            return self.get_by_field("id", user_id)

        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        assignments: list[str] = []
        for i, (key, value) in enumerate(fields.items()):
            names[f"#K{i}"] = key
            values[f":val{i}"] = _serializer.serialize(_to_dynamo_value(value))
            assignments.append(f"#K{i} = :val{i}")

        try:
            response = self.client.update_item(
                TableName=self.table_name,
                Key={"id": {"S": user_id}},
                UpdateExpression=f"SET {', '.join(assignments)}",
                ConditionExpression="attribute_exists(id)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as err:
            if _is_conditional_failure(err):
                return None
            raise
        attributes = response.get("Attributes")
        return from_item(attributes) if attributes else None

    def delete(self, user_id: str) -> dict[str, Any] | None:
        record = self.get_by_field("id", user_id)
        if record is None:
            return None

        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        "Delete": {
                            "TableName": self.table_name,
                            "Key": {"id": {"S": user_id}},
                            "ConditionExpression": "attribute_exists(id)",
                        }
                    },
                    {
                        "Delete": {
                            "TableName": self.table_name,
                            "Key": {"id": {"S": f"{EMAIL_MARKER_PREFIX}{record['email']}"}},
                        }
                    },
                ]
            )
        except ClientError as err:
            if _is_conditional_failure(err):
                # Deleted concurrently.
                return None
            raise
        return record


# ---------------------------------------------------------------------------
# In-memory (local development and tests)
# ---------------------------------------------------------------------------


@dataclass
class InMemoryUserDirectory:
    records: dict[str, dict[str, Any]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_by_field(self, field_name: str, value: str) -> dict[str, Any] | None:
        if field_name != "id" and field_name not in INDEX_BY_FIELD:
            raise ValueError(f"No index for field {field_name!r}")
        with self._lock:
            for record in self.records.values():
                if record.get(field_name) == value:
                    return copy.deepcopy(record)
        return None

    def resolve_email(self, email: str) -> dict[str, Any] | None:
        return self.get_by_field("email", email)

    def create(self, record: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            if record["id"] in self.records:
                raise UserAlreadyExistsError(record["email"])
            if any(r.get("email") == record["email"] for r in self.records.values()):
                raise UserAlreadyExistsError(record["email"])
            self.records[record["id"]] = copy.deepcopy(record)
        return copy.deepcopy(record)

    def update(self, user_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        _check_update_fields(fields)
        with self._lock:
            record = self.records.get(user_id)
            if record is None:
                return None
            record.update(copy.deepcopy(fields))
            return copy.deepcopy(record)

    def delete(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self.records.pop(user_id, None)
