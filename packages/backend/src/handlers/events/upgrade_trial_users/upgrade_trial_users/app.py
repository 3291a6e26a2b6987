import os
from typing import Any, Dict
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from futurecast.services.billing_service import BillingService
from futurecast.services.profile_service import ProfileService

# Initialize the logger
logger = Logger()

# Retrieve environment variables
PROFILES_TABLE_NAME = os.environ.get("PROFILES_TABLE_NAME", "fc-profiles")


@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Scheduled handler moving finished Stripe trials onto the basic plan.
    """
    result = BillingService(ProfileService(PROFILES_TABLE_NAME)).upgrade_trial_users()
    logger.info(f"Upgraded {result['upgraded']} trial subscriptions, {result['errors']} errors")
    return result
