import os
from typing import Dict, Any
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext
from botocore.exceptions import BotoCoreError, ClientError

from futurecast.models.subscription import SubscriptionError
from futurecast.services.profile_service import ProfileService

# Initialize the logger
logger = Logger()

# Retrieve environment variables
PROFILES_TABLE_NAME = os.environ.get("PROFILES_TABLE_NAME", "fc-profiles")


def extract_user_info(event: Dict[str, Any]) -> Dict[str, Any]:
    """Extract user information from Cognito post-confirmation event."""
    try:
        attributes = event["request"]["userAttributes"]
        user_info = {
            "user_id": attributes["sub"],
            "email": attributes["email"],
            "first_name": attributes.get("given_name"),
            "last_name": attributes.get("family_name"),
        }
    except KeyError as e:
        logger.error(f"Missing required user attribute: {e}")
        raise ValueError(f"Invalid Cognito event structure: missing {e}")

    logger.info(f"Processing post-confirmation for user: {user_info['user_id']}, email: {user_info['email']}")
    return user_info


def initialize_user_profile(user_info: Dict[str, Any], profile_service: ProfileService) -> bool:
    """Create the trial profile unless the user already has one."""
    user_id = user_info["user_id"]
    try:
        if profile_service.get_profile(user_id) is not None:
            logger.info(f"User {user_id} already has a profile, skipping initialization")
            return True

        profile_service.create_profile(
            user_id,
            email=user_info["email"],
            first_name=user_info["first_name"],
            last_name=user_info["last_name"],
        )
        return True
    except (ClientError, BotoCoreError, SubscriptionError) as e:
        logger.error(f"Error initializing user profile: {e}")
        return False


@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Cognito Post-Confirmation Lambda handler.

    Starts every confirmed user on a 7 day trial.

    Input: Cognito Post-Confirmation trigger event
    Output: Same event (required by Cognito)
    """
    logger.info("Post-confirmation Lambda triggered", extra={
        "trigger_source": event.get("triggerSource", "unknown"),
        "user_pool_id": event.get("userPoolId", "unknown")
    })

    try:
        user_info = extract_user_info(event)
        if initialize_user_profile(user_info, ProfileService(PROFILES_TABLE_NAME)):
            logger.info(f"Successfully initialized user {user_info['user_id']}")
        else:
            # Don't fail the Cognito flow, but log the error
            logger.error(f"Failed to initialize user profile for {user_info['user_id']}")
    except ValueError as e:
        logger.error(f"Post-confirmation failed but allowing registration to proceed: {e}")

    # Cognito requires the original event back for the trigger to complete
    return event
