import os
from typing import Any, Dict
from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext

from futurecast.constants.metrics import HISTORICAL_LOOKBACK_DAYS
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


class InvalidPayload(Exception):
    """Raised when the invocation does not name an asset."""

    pass


@tracer.capture_lambda_handler
@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Backfill the daily metrics of one asset.

    Input: {"asset_slug": "bitcoin", "lookback_days": 3650}
    """
    asset_slug = (event or {}).get("asset_slug")
    if not asset_slug:
        raise InvalidPayload("asset_slug is required")
    lookback_days = int(event.get("lookback_days", HISTORICAL_LOOKBACK_DAYS))

    store = MetricsStore(ASSET_METRICS_TABLE_NAME, METRIC_SYNC_STATUS_TABLE_NAME)
    sync_service = MetricsSyncService(
        store=store,
        asset_subscription_service=AssetSubscriptionService(ASSET_SUBSCRIPTIONS_TABLE_NAME, metrics_store=store),
    )
    result = sync_service.sync_historical_metrics(asset_slug, lookback_days=lookback_days)
    return {"success": result.metrics_failed == 0, "results": result.model_dump()}
