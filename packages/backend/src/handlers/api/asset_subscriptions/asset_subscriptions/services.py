import json
import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from futurecast.models.subscription import SubscriptionError
from futurecast.services.aws import get_lambda_client
from futurecast.services.report_service import ReportService

logger = logging.getLogger(__name__)


def trigger_historical_sync(asset_slug: str, function_name: Optional[str]) -> bool:
    """
    Start the historical backfill of an asset without waiting for it.

    Args:
        asset_slug: Asset to backfill
        function_name: Name of the historical sync Lambda; nothing is
            triggered when it is not configured

    Returns:
        bool: True if the invocation was accepted
    """
    if not function_name:
        logger.info(f"Historical sync function not configured, skipping backfill of {asset_slug}")
        return False

    try:
        get_lambda_client().invoke(
            FunctionName=function_name,
            InvocationType="Event",
            Payload=json.dumps({"asset_slug": asset_slug}).encode("utf-8"),
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to trigger historical sync for {asset_slug}: {str(e)}")
        return False

    logger.info(f"Triggered historical sync for {asset_slug}")
    return True


def send_welcome_report(report_service: ReportService, user_id: str, asset_slug: str) -> bool:
    """
    Send the user's one-time welcome report for a newly tracked asset.

    Failures are logged and never fail the request that tracked the asset.
    """
    try:
        return report_service.send_welcome_report(user_id, asset_slug)
    except (ClientError, BotoCoreError, SubscriptionError) as e:
        logger.error(f"Failed to send welcome report to user {user_id}: {str(e)}")
        return False
