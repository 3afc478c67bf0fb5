"""DynamoDB-backed repositories and table setup.

One table per record type, hash key ``pk``. Version checks for optimistic
concurrency are pushed down as condition expressions.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.config import Config
from botocore.exceptions import ClientError

from inventory_network.exceptions import ConcurrentModificationError
from inventory_network.storage.base import Repository, T
from inventory_network.storage.codec import from_item, to_item

logger = logging.getLogger(__name__)

BOTO_CONFIG = Config(retries={"max_attempts": 3})
KEY_ATTRIBUTE = "pk"

TABLE_NAMES = (
    "Warehouses",
    "WarehouseLocations",
    "WarehouseZones",
    "Inventory",
    "InventoryCounts",
    "Transfers",
    "ServiceDecisions",
    "StockAuditLog",
)


def table_definition(table_name: str) -> dict:
    return {
        "TableName": table_name,
        "KeySchema": [{"AttributeName": KEY_ATTRIBUTE, "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": KEY_ATTRIBUTE, "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    }


def get_dynamodb_resource(region_name: str) -> Any:
    return boto3.resource("dynamodb", region_name=region_name, config=BOTO_CONFIG)


def create_tables(dynamodb: Any, table_prefix: str = "") -> list[str]:
    """Creates missing tables and waits until they are active."""
    created = []
    for name in TABLE_NAMES:
        full_name = f"{table_prefix}{name}"
        try:
            table = dynamodb.create_table(**table_definition(full_name))
            table.wait_until_exists()
            created.append(full_name)
            logger.info("Table created: %s", full_name)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceInUseException":
                logger.info("Table already exists: %s", full_name)
            else:
                raise
    return created


class DynamoDBRepository(Repository[T]):

    def __init__(self, table: Any, record_type: type) -> None:
        self.table = table
        self.record_type = record_type

    def get(self, key: str) -> Optional[T]:
        response = self.table.get_item(Key={KEY_ATTRIBUTE: key}, ConsistentRead=True)
        item = response.get("Item")
        return from_item(self.record_type, item) if item else None

    def list(self) -> list[T]:
        records = []
        kwargs: dict = {"ConsistentRead": True}
        while True:
            response = self.table.scan(**kwargs)
            records.extend(from_item(self.record_type, item) for item in response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return records
            kwargs["ExclusiveStartKey"] = last_key

    def find(self, **attrs: Any) -> list[T]:
        if not attrs:
            return self.list()
        condition = None
        for name, value in attrs.items():
            clause = Attr(name).eq(to_item(value))
            condition = clause if condition is None else condition & clause

        records = []
        kwargs: dict = {"FilterExpression": condition, "ConsistentRead": True}
        while True:
            response = self.table.scan(**kwargs)
            records.extend(from_item(self.record_type, item) for item in response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return records
            kwargs["ExclusiveStartKey"] = last_key

    def upsert(self, key: str, record: T, expected_version: Optional[int] = None) -> T:
        item = to_item(record)
        item[KEY_ATTRIBUTE] = key
        kwargs: dict = {"Item": item}
        if expected_version == 0:
            kwargs["ConditionExpression"] = Attr(KEY_ATTRIBUTE).not_exists()
        elif expected_version is not None:
            kwargs["ConditionExpression"] = Attr("version").eq(expected_version)

        try:
            self.table.put_item(**kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ConcurrentModificationError(
                    f"Version conflict on {key}: expected {expected_version}"
                ) from e
            logger.error("DynamoDB write error [%s]: %s", key, e)
            raise
        return record

    def delete(self, key: str) -> bool:
        response = self.table.delete_item(Key={KEY_ATTRIBUTE: key}, ReturnValues="ALL_OLD")
        return "Attributes" in response
