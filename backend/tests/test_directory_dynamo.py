from __future__ import annotations

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from identity_api.services.directory import DynamoUserDirectory, UserAlreadyExistsError

TABLE = "users"


def _client():
    return boto3.client(
        "dynamodb",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


RECORD = {
    "id": "u-1",
    "email": "a@example.com",
    "created": 1700000000000,
    "preferences": {"width": 512, "height": 512},
    "features": {},
    "idp:google:id": "g-1",
    "_queue": "sd-jobs_u-1",
}

ITEM = {
    "id": {"S": "u-1"},
    "email": {"S": "a@example.com"},
    "created": {"N": "1700000000000"},
    "preferences": {"M": {"width": {"N": "512"}, "height": {"N": "512"}}},
    "features": {"M": {}},
    "idp:google:id": {"S": "g-1"},
    "_queue": {"S": "sd-jobs_u-1"},
}


def test_get_by_id_uses_get_item_and_converts_numbers():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response(
        "get_item",
        {"Item": ITEM},
        {"TableName": TABLE, "Key": {"id": {"S": "u-1"}}, "ConsistentRead": True},
    )

    with stubber:
        record = directory.get_by_field("id", "u-1")

    assert record == RECORD
    assert isinstance(record["created"], int)


def test_get_by_provider_link_queries_index():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response(
        "query",
        {"Items": [ITEM], "Count": 1},
        {
            "TableName": TABLE,
            "IndexName": "google_id",
            "KeyConditionExpression": "#field = :value",
            "ExpressionAttributeNames": {"#field": "idp:google:id"},
            "ExpressionAttributeValues": {":value": {"S": "g-1"}},
            "Limit": 1,
        },
    )

    with stubber:
        record = directory.get_by_field("idp:google:id", "g-1")

    assert record["id"] == "u-1"


def test_get_by_email_returns_none_when_missing():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response("query", {"Items": [], "Count": 0})

    with stubber:
        assert directory.get_by_field("email", "nobody@example.com") is None


def test_unknown_field_is_rejected():
    directory = DynamoUserDirectory(_client(), TABLE)
    with pytest.raises(ValueError):
        directory.get_by_field("username", "alice")


def test_create_writes_user_and_email_marker():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response(
        "transact_write_items",
        {},
        {
            "TransactItems": [
                {"Put": {"TableName": TABLE, "Item": ITEM, "ConditionExpression": "attribute_not_exists(id)"}},
                {
                    "Put": {
                        "TableName": TABLE,
                        "Item": {"id": {"S": "email#a@example.com"}, "user_id": {"S": "u-1"}},
                        "ConditionExpression": "attribute_not_exists(id)",
                    }
                },
            ]
        },
    )

    with stubber:
        assert directory.create(RECORD) == RECORD
    stubber.assert_no_pending_responses()


def test_create_conflict_raises_already_exists():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_client_error(
        "transact_write_items",
        service_error_code="TransactionCanceledException",
        service_message="Transaction cancelled, please refer cancellation reasons for specific reasons "
        "[None, ConditionalCheckFailed]",
        http_status_code=400,
    )

    with stubber:
        with pytest.raises(UserAlreadyExistsError):
            directory.create(RECORD)


def test_create_other_errors_propagate():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_client_error(
        "transact_write_items",
        service_error_code="ProvisionedThroughputExceededException",
        http_status_code=400,
    )

    with stubber:
        with pytest.raises(ClientError):
            directory.create(RECORD)


def test_update_is_conditional_and_returns_new_record():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response(
        "update_item",
        {"Attributes": {**ITEM, "username": {"S": "alice"}}},
        {
            "TableName": TABLE,
            "Key": {"id": {"S": "u-1"}},
            "UpdateExpression": "SET #K0 = :val0",
            "ConditionExpression": "attribute_exists(id)",
            "ExpressionAttributeNames": {"#K0": "username"},
            "ExpressionAttributeValues": {":val0": {"S": "alice"}},
            "ReturnValues": "ALL_NEW",
        },
    )

    with stubber:
        record = directory.update("u-1", {"username": "alice"})

    assert record["username"] == "alice"


def test_update_missing_id_returns_none():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_client_error("update_item", service_error_code="ConditionalCheckFailedException", http_status_code=400)

    with stubber:
        assert directory.update("missing", {"username": "alice"}) is None


def test_update_refuses_identity_fields():
    directory = DynamoUserDirectory(_client(), TABLE)
    with pytest.raises(ValueError):
        directory.update("u-1", {"email": "b@example.com"})


def test_update_converts_floats_to_decimals():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response(
        "update_item",
        {"Attributes": {**ITEM, "score": {"N": "0.5"}}},
        {
            "TableName": TABLE,
            "Key": {"id": {"S": "u-1"}},
            "UpdateExpression": "SET #K0 = :val0",
            "ConditionExpression": "attribute_exists(id)",
            "ExpressionAttributeNames": {"#K0": "score"},
            "ExpressionAttributeValues": {":val0": {"N": "0.5"}},
            "ReturnValues": "ALL_NEW",
        },
    )

    with stubber:
        record = directory.update("u-1", {"score": 0.5})

    assert record["score"] == 0.5


def _get_item_params(key: str) -> dict:
    return {"TableName": TABLE, "Key": {"id": {"S": key}}, "ConsistentRead": True}


def test_resolve_email_reads_marker_then_user():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response(
        "get_item",
        {"Item": {"id": {"S": "email#a@example.com"}, "user_id": {"S": "u-1"}}},
        _get_item_params("email#a@example.com"),
    )
    stubber.add_response("get_item", {"Item": ITEM}, _get_item_params("u-1"))

    with stubber:
        assert directory.resolve_email("a@example.com") == RECORD
    stubber.assert_no_pending_responses()


def test_resolve_email_without_marker_is_none():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response("get_item", {}, _get_item_params("email#nobody@example.com"))

    with stubber:
        assert directory.resolve_email("nobody@example.com") is None


def test_email_markers_are_not_users():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)

    # No responses queued: any call to DynamoDB would fail the test.
    with stubber:
        assert directory.get_by_field("id", "email#a@example.com") is None
        assert directory.update("email#a@example.com", {"username": "alice"}) is None
        assert directory.update("email#a@example.com", {}) is None
        assert directory.delete("email#a@example.com") is None


def test_delete_removes_user_and_marker_in_one_transaction():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response("get_item", {"Item": ITEM}, _get_item_params("u-1"))
    stubber.add_response(
        "transact_write_items",
        {},
        {
            "TransactItems": [
                {
                    "Delete": {
                        "TableName": TABLE,
                        "Key": {"id": {"S": "u-1"}},
                        "ConditionExpression": "attribute_exists(id)",
                    }
                },
                {"Delete": {"TableName": TABLE, "Key": {"id": {"S": "email#a@example.com"}}}},
            ]
        },
    )

    with stubber:
        assert directory.delete("u-1") == RECORD
    stubber.assert_no_pending_responses()


def test_delete_missing_returns_none():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response("get_item", {}, _get_item_params("nope"))

    with stubber:
        assert directory.delete("nope") is None
    stubber.assert_no_pending_responses()


def test_concurrent_delete_returns_none():
    client = _client()
    directory = DynamoUserDirectory(client, TABLE)
    stubber = Stubber(client)
    stubber.add_response("get_item", {"Item": ITEM}, _get_item_params("u-1"))
    stubber.add_client_error(
        "transact_write_items",
        service_error_code="TransactionCanceledException",
        service_message="Transaction cancelled [ConditionalCheckFailed, None]",
        http_status_code=400,
    )

    with stubber:
        assert directory.delete("u-1") is None
