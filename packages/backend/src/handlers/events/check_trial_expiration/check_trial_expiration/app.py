import os
from typing import Any, Dict
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from futurecast.services.asset_limit_service import AssetLimitService
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.profile_service import ProfileService

from check_trial_expiration.services import expire_trials

# Initialize the logger
logger = Logger()

# Retrieve environment variables
PROFILES_TABLE_NAME = os.environ.get("PROFILES_TABLE_NAME", "fc-profiles")
ASSET_SUBSCRIPTIONS_TABLE_NAME = os.environ.get("ASSET_SUBSCRIPTIONS_TABLE_NAME", "fc-asset-subscriptions")


@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Scheduled handler ending expired trials.
    """
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    asset_service = AssetSubscriptionService(ASSET_SUBSCRIPTIONS_TABLE_NAME, profile_service=profile_service)
    result = expire_trials(profile_service, AssetLimitService(profile_service, asset_service))

    logger.info(f"Expired {result['expired_count']} trials", extra={"errors": len(result["errors"])})
    return {"success": True, **result}
