import os
from datetime import datetime, timezone
from typing import List, Optional

import boto3
from mypy_boto3_dynamodb.service_resource import Table  # type: ignore

from futurecast.services.aws import get_region_name


def get_profiles_table_name() -> str:
    """
    Retrieve the name of the DynamoDB table used for storing user profiles.

    Returns:
        str: The name of the DynamoDB table.
    """
    return os.environ["PROFILES_TABLE_NAME"]


def get_asset_subscriptions_table_name() -> str:
    """
    Retrieve the name of the DynamoDB table linking users to tracked assets.

    Returns:
        str: The name of the DynamoDB table.
    """
    return os.environ["ASSET_SUBSCRIPTIONS_TABLE_NAME"]


def get_asset_metrics_table_name() -> str:
    return os.environ["ASSET_METRICS_TABLE_NAME"]


def get_metric_sync_status_table_name() -> str:
    return os.environ["METRIC_SYNC_STATUS_TABLE_NAME"]


def get_request_purchases_table_name() -> str:
    return os.environ["REQUEST_PURCHASES_TABLE_NAME"]


def create_profiles_table() -> Table:
    """Create a mock profiles table with the StripeCustomerIndex GSI."""
    dynamodb_resource = boto3.resource("dynamodb", region_name=get_region_name())
    table = dynamodb_resource.create_table(
        TableName=get_profiles_table_name(),
        KeySchema=[{"AttributeName": "user_id", "KeyType": "HASH"}],
        AttributeDefinitions=[
            {"AttributeName": "user_id", "AttributeType": "S"},
            {"AttributeName": "stripe_customer_id", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "StripeCustomerIndex",
                "KeySchema": [{"AttributeName": "stripe_customer_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    # Wait for table to be created
    table.wait_until_exists()

    return table


def create_asset_subscriptions_table() -> Table:
    dynamodb_resource = boto3.resource("dynamodb", region_name=get_region_name())
    table = dynamodb_resource.create_table(
        TableName=get_asset_subscriptions_table_name(),
        KeySchema=[
            {"AttributeName": "user_id", "KeyType": "HASH"},
            {"AttributeName": "asset_slug", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "user_id", "AttributeType": "S"},
            {"AttributeName": "asset_slug", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    table.wait_until_exists()

    return table


def create_asset_metrics_table() -> Table:
    """Create a mock metrics table keyed by asset and metric_type#datetime."""
    dynamodb_resource = boto3.resource("dynamodb", region_name=get_region_name())
    table = dynamodb_resource.create_table(
        TableName=get_asset_metrics_table_name(),
        KeySchema=[
            {"AttributeName": "asset_slug", "KeyType": "HASH"},
            {"AttributeName": "metric_key", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "asset_slug", "AttributeType": "S"},
            {"AttributeName": "metric_key", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    table.wait_until_exists()

    return table


def create_metric_sync_status_table() -> Table:
    dynamodb_resource = boto3.resource("dynamodb", region_name=get_region_name())
    table = dynamodb_resource.create_table(
        TableName=get_metric_sync_status_table_name(),
        KeySchema=[{"AttributeName": "asset_slug", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "asset_slug", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )

    table.wait_until_exists()

    return table


def create_request_purchases_table() -> Table:
    dynamodb_resource = boto3.resource("dynamodb", region_name=get_region_name())
    table = dynamodb_resource.create_table(
        TableName=get_request_purchases_table_name(),
        KeySchema=[{"AttributeName": "purchase_id", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "purchase_id", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )

    table.wait_until_exists()

    return table


def create_all_tables() -> None:
    """Create every table the backend uses."""
    create_profiles_table()
    create_asset_subscriptions_table()
    create_asset_metrics_table()
    create_metric_sync_status_table()
    create_request_purchases_table()


def put_asset_subscription(
    user_id: str,
    asset_slug: str,
    created_at: datetime,
    report_times: Optional[List[str]] = None,
    report_days: str = "daily",
) -> None:
    """Insert an asset subscription row directly, with a chosen creation time."""
    table = boto3.resource("dynamodb", region_name=get_region_name()).Table(get_asset_subscriptions_table_name())
    table.put_item(
        Item={
            "user_id": user_id,
            "asset_slug": asset_slug,
            "subscription_id": f"sub-{user_id}-{asset_slug}",
            "asset_name": asset_slug.capitalize(),
            "asset_symbol": asset_slug[:3].upper(),
            "report_times": report_times or [],
            "report_days": report_days,
            "created_at": created_at.astimezone(timezone.utc).isoformat(),
        }
    )
