#!/usr/bin/env python3
"""
Create the user table and its lookup indexes against a (local) DynamoDB.

Usage:
  python scripts/init_local_dynamo.py \
    --endpoint http://localhost:8000 \
    --table users \
    --recreate
"""

from __future__ import annotations

import argparse
import sys

import boto3
from botocore.exceptions import ClientError


# Attribute -> index name; mirrors identity_api.services.directory.INDEX_BY_FIELD
INDEXED_ATTRIBUTES = {
    "email": "email",
    "idp:cognito:id": "cognito_id",
    "idp:google:id": "google_id",
    "idp:discord:id": "discord_id",
}


def table_definition(table_name: str) -> dict:
    return {
        "TableName": table_name,
        "AttributeDefinitions": [{"AttributeName": "id", "AttributeType": "S"}]
        + [{"AttributeName": attr, "AttributeType": "S"} for attr in INDEXED_ATTRIBUTES],
        "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": index,
                "KeySchema": [{"AttributeName": attr, "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
            for attr, index in INDEXED_ATTRIBUTES.items()
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }


def create_table(dynamodb, table_name: str, recreate: bool) -> None:
    try:
        dynamodb.create_table(**table_definition(table_name))
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") != "ResourceInUseException":
            raise
        if not recreate:
            print(f"[dynamo] table {table_name} already exists", flush=True)
            return
        print(f"[dynamo] table {table_name} exists, recreating...", flush=True)
        dynamodb.delete_table(TableName=table_name)
        dynamodb.get_waiter("table_not_exists").wait(TableName=table_name)
        dynamodb.create_table(**table_definition(table_name))

    dynamodb.get_waiter("table_exists").wait(TableName=table_name)
    print(f"[dynamo] table {table_name} ready", flush=True)


def main() -> int:
    p = argparse.ArgumentParser()
    p.add_argument("--endpoint", default="http://localhost:8000")
    p.add_argument("--region", default="us-east-1")
    p.add_argument("--table", default="users")
    p.add_argument("--recreate", action="store_true")
    args = p.parse_args()

    dynamodb = boto3.client("dynamodb", region_name=args.region, endpoint_url=args.endpoint)
    try:
        create_table(dynamodb, args.table, args.recreate)
    except ClientError as e:
        print(f"[dynamo] failed: {e}", file=sys.stderr, flush=True)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
