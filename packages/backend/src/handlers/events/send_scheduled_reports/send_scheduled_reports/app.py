import os
from typing import Any, Dict
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.metrics_store import MetricsStore
from futurecast.services.profile_service import ProfileService
from futurecast.services.report_service import ReportService

# Initialize the logger
logger = Logger()

# Retrieve environment variables
PROFILES_TABLE_NAME = os.environ.get("PROFILES_TABLE_NAME", "fc-profiles")
ASSET_SUBSCRIPTIONS_TABLE_NAME = os.environ.get("ASSET_SUBSCRIPTIONS_TABLE_NAME", "fc-asset-subscriptions")
ASSET_METRICS_TABLE_NAME = os.environ.get("ASSET_METRICS_TABLE_NAME", "fc-asset-metrics")
METRIC_SYNC_STATUS_TABLE_NAME = os.environ.get("METRIC_SYNC_STATUS_TABLE_NAME", "fc-metric-sync-status")
REPORT_SENDER_EMAIL = os.environ.get("REPORT_SENDER_EMAIL", "reports@futurecast.pro")
REPORT_WINDOW_MINUTES = int(os.environ.get("REPORT_WINDOW_MINUTES", "15"))


@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Scheduled handler, runs every REPORT_WINDOW_MINUTES and e-mails the reports due in the current window.
    """
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    store = MetricsStore(ASSET_METRICS_TABLE_NAME, METRIC_SYNC_STATUS_TABLE_NAME)
    report_service = ReportService(
        asset_subscription_service=AssetSubscriptionService(
            ASSET_SUBSCRIPTIONS_TABLE_NAME, profile_service=profile_service, metrics_store=store
        ),
        profile_service=profile_service,
        store=store,
        sender_email=REPORT_SENDER_EMAIL,
        window_minutes=REPORT_WINDOW_MINUTES,
    )

    result = report_service.send_due_reports()
    logger.info(f"Sent {result['sent']} reports, {len(result['errors'])} failed")
    return {"success": True, **result}
