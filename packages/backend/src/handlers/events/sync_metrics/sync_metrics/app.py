import os
from typing import Any, Dict
from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext

from futurecast.constants.metrics import METRIC_GROUPS
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.metrics_store import MetricsStore
from futurecast.services.metrics_sync_service import MetricsSyncService

# Initialize Powertools utilities
logger = Logger()
tracer = Tracer()

# Environment variables
ASSET_SUBSCRIPTIONS_TABLE_NAME = os.environ.get("ASSET_SUBSCRIPTIONS_TABLE_NAME", "fc-asset-subscriptions")
ASSET_METRICS_TABLE_NAME = os.environ.get("ASSET_METRICS_TABLE_NAME", "fc-asset-metrics")
METRIC_SYNC_STATUS_TABLE_NAME = os.environ.get("METRIC_SYNC_STATUS_TABLE_NAME", "fc-metric-sync-status")

ALL_GROUPS = "all"


class InvalidSyncGroup(Exception):
    """Raised when the schedule passes an unknown metric group."""

    pass


@tracer.capture_method
def build_sync_service() -> MetricsSyncService:
    store = MetricsStore(ASSET_METRICS_TABLE_NAME, METRIC_SYNC_STATUS_TABLE_NAME)
    return MetricsSyncService(
        store=store,
        asset_subscription_service=AssetSubscriptionService(ASSET_SUBSCRIPTIONS_TABLE_NAME, metrics_store=store),
    )


@tracer.capture_lambda_handler
@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Scheduled metric sync.

    Input: {"group": "5m" | "daily" | "trends" | "all"}
    """
    group = (event or {}).get("group", ALL_GROUPS)
    if group != ALL_GROUPS and group not in METRIC_GROUPS:
        raise InvalidSyncGroup(f"Unknown metric group {group}, expected one of {sorted(METRIC_GROUPS)} or all")

    sync_service = build_sync_service()
    if group == ALL_GROUPS:
        result = sync_service.sync_all_metrics()
        logger.info(f"Sync of all groups finished with {result['status']}")
        return {"success": True, **result}

    result = sync_service.sync_metrics(group)
    return {"success": True, "message": result.message, "results": result.model_dump()}
