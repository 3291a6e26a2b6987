import os
from aws_lambda_powertools import Logger
from aws_lambda_powertools.event_handler import APIGatewayRestResolver
from aws_lambda_powertools.event_handler.exceptions import BadRequestError, ServiceError
from aws_lambda_powertools.utilities.typing import LambdaContext
from typing import Any, Dict, Optional

from futurecast.services.asset_limit_service import AssetLimitService
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.profile_service import ProfileService
from futurecast.services.webhook_service import RequestPurchaseError, WebhookService, WebhookSignatureError

# Initialize the logger
logger = Logger()

# Retrieve environment variables
PROFILES_TABLE_NAME = os.environ.get("PROFILES_TABLE_NAME", "fc-profiles")
ASSET_SUBSCRIPTIONS_TABLE_NAME = os.environ.get("ASSET_SUBSCRIPTIONS_TABLE_NAME", "fc-asset-subscriptions")
REQUEST_PURCHASES_TABLE_NAME = os.environ.get("REQUEST_PURCHASES_TABLE_NAME", "fc-request-purchases")

# Stripe calls this endpoint server to server, no CORS and no Cognito
app = APIGatewayRestResolver()


def get_header(name: str) -> Optional[str]:
    for key, value in (app.current_event.headers or {}).items():
        if key.lower() == name.lower():
            return value
    return None


def build_webhook_service() -> WebhookService:
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    asset_service = AssetSubscriptionService(ASSET_SUBSCRIPTIONS_TABLE_NAME, profile_service=profile_service)
    return WebhookService(
        profile_service=profile_service,
        asset_limit_service=AssetLimitService(profile_service, asset_service),
        purchases_table_name=REQUEST_PURCHASES_TABLE_NAME,
    )


@app.post("/stripe/webhook")
def stripe_webhook() -> Dict[str, Any]:
    """
    Receive Stripe billing events
    """
    payload = app.current_event.decoded_body or ""
    webhook_service = build_webhook_service()

    try:
        event = webhook_service.construct_event(payload, get_header("Stripe-Signature"))
    except WebhookSignatureError as exc:
        logger.warning(f"Rejected webhook: {str(exc)}")
        raise BadRequestError(str(exc))

    try:
        return webhook_service.handle_event(event)
    except RequestPurchaseError as exc:
        logger.error(f"Failed to process request purchase: {str(exc)}")
        raise ServiceError(500, "Error processing request purchase")


@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda function handler.
    """
    return app.resolve(event, context)
