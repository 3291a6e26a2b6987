"""
DynamoDB storage for asset metrics and per-asset sync status.
"""

import json
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Key

from futurecast.models.metrics import MetricRecord, SyncStatus
from futurecast.services.aws import get_ddb_table

logger = Logger()


def format_timestamp(value: datetime) -> str:
    """UTC timestamp in the ISO format Santiment returns, e.g. 2024-01-01T00:00:00Z."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _decimal(value: Optional[float]) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def record_to_item(record: MetricRecord) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "asset_slug": record.asset_slug,
        "metric_key": record.sort_key,
        "metric_type": record.metric_type,
        "metric_category": record.metric_category.value,
        "datetime": record.datetime,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    for field in ("value", "ohlc_open", "ohlc_high", "ohlc_low", "ohlc_close"):
        value = getattr(record, field)
        if value is not None:
            item[field] = _decimal(value)
    if record.json_data is not None:
        item["json_data"] = json.dumps(record.json_data)
    return item


def item_to_record(item: Dict[str, Any]) -> MetricRecord:
    data = {k: float(v) if isinstance(v, Decimal) else v for k, v in item.items()}
    if isinstance(data.get("json_data"), str):
        data["json_data"] = json.loads(data["json_data"])
    return MetricRecord.model_validate(data)


class MetricsStore:
    """Reads and writes the asset metrics and metric sync status tables."""

    def __init__(self, metrics_table_name: Optional[str] = None, status_table_name: Optional[str] = None):
        self.metrics_table = get_ddb_table(
            metrics_table_name or os.environ.get("ASSET_METRICS_TABLE_NAME", "fc-asset-metrics")
        )
        self.status_table = get_ddb_table(
            status_table_name or os.environ.get("METRIC_SYNC_STATUS_TABLE_NAME", "fc-metric-sync-status")
        )

    def upsert(self, record: MetricRecord) -> None:
        """Write a datapoint; the (asset_slug, metric_type#datetime) key makes rewrites idempotent."""
        self.metrics_table.put_item(Item=record_to_item(record))

    def upsert_many(self, records: Iterable[MetricRecord]) -> int:
        count = 0
        with self.metrics_table.batch_writer(overwrite_by_pkeys=["asset_slug", "metric_key"]) as batch:
            for record in records:
                batch.put_item(Item=record_to_item(record))
                count += 1
        return count

    def metrics_exist(self, asset_slug: str) -> bool:
        response = self.metrics_table.query(
            KeyConditionExpression=Key("asset_slug").eq(asset_slug.lower()),
            Limit=1,
        )
        return bool(response.get("Items"))

    def get_metrics(
        self,
        asset_slug: str,
        since: Optional[datetime] = None,
        metric_type: Optional[str] = None,
    ) -> List[MetricRecord]:
        """
        Stored datapoints for an asset, ordered by metric type then time.

        Args:
            asset_slug: Asset to read
            since: Only keep datapoints at or after this time
            metric_type: Restrict to one metric

        Returns:
            List of MetricRecord
        """
        key_condition = Key("asset_slug").eq(asset_slug.lower())
        if metric_type:
            key_condition = key_condition & Key("metric_key").begins_with(f"{metric_type}#")

        records: List[MetricRecord] = []
        kwargs: Dict[str, Any] = {"KeyConditionExpression": key_condition}
        while True:
            response = self.metrics_table.query(**kwargs)
            records.extend(item_to_record(item) for item in response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                break
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

        if since is not None:
            cutoff = format_timestamp(since)
            records = [r for r in records if r.datetime >= cutoff]
        return records

    def set_sync_status(self, asset_slug: str, status: SyncStatus, error_message: Optional[str] = None) -> None:
        item: Dict[str, Any] = {
            "asset_slug": asset_slug,
            "status": status.value,
            "last_sync": datetime.now(timezone.utc).isoformat(),
        }
        if error_message:
            item["error_message"] = error_message
        self.status_table.put_item(Item=item)

    def get_sync_status(self, asset_slug: str) -> Optional[Dict[str, Any]]:
        response = self.status_table.get_item(Key={"asset_slug": asset_slug})
        return response.get("Item")
