import os
import stripe
from aws_lambda_powertools import Logger
from aws_lambda_powertools.event_handler import APIGatewayRestResolver
from aws_lambda_powertools.event_handler.api_gateway import CORSConfig
from aws_lambda_powertools.event_handler.exceptions import (
    BadRequestError,
    NotFoundError,
    ServiceError,
    UnauthorizedError,
)
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import BaseModel, ValidationError
from typing import Any, Dict, Type, TypeVar

from futurecast.models.subscription import Profile
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.billing_service import (
    BillingError,
    BillingService,
    CheckoutVerificationError,
    CustomerNotFoundError,
    InvalidSubscriptionError,
)
from futurecast.services.profile_service import ProfileService
from futurecast.services.subscription_service import get_pricing, get_subscription_overview, price_id_for_tier
from futurecast.utils.auth import extract_user_id_from_event

from subscription.models import (
    AdditionalAssetsRequest,
    ChangePlanRequest,
    PortalRequest,
    SessionRequest,
    SubscriptionIdRequest,
)

# Initialize the logger
logger = Logger()

# Retrieve environment variables
PROFILES_TABLE_NAME = os.environ.get("PROFILES_TABLE_NAME", "fc-profiles")
ASSET_SUBSCRIPTIONS_TABLE_NAME = os.environ.get("ASSET_SUBSCRIPTIONS_TABLE_NAME", "fc-asset-subscriptions")

# Configure CORS
cors_config = CORSConfig(
    allow_origin="*",  # In production, specify your actual domain
)

# Initialize the APIGatewayRestResolver
app = APIGatewayRestResolver(cors=cors_config)

RequestModel = TypeVar("RequestModel", bound=BaseModel)


def current_user_id() -> str:
    user_id = extract_user_id_from_event(app.current_event.raw_event)
    if not user_id:
        logger.error("No user_id found in JWT token")
        raise UnauthorizedError("Authentication required")
    return user_id


def parse_body(model: Type[RequestModel]) -> RequestModel:
    try:
        return model(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")


def load_profile(profile_service: ProfileService, user_id: str) -> Profile:
    profile = profile_service.get_profile(user_id)
    if profile is None:
        raise NotFoundError(f"Profile not found for user {user_id}")
    return profile


def billing_error_response(exc: Exception, user_id: str) -> ServiceError:
    """Translate a billing failure into the HTTP error returned to the client."""
    if isinstance(exc, InvalidSubscriptionError):
        return ServiceError(403, str(exc))
    if isinstance(exc, CustomerNotFoundError):
        return NotFoundError(str(exc))
    if isinstance(exc, (CheckoutVerificationError, BillingError)):
        return BadRequestError(str(exc))
    logger.error(f"Stripe error for user {user_id}: {str(exc)}")
    return ServiceError(502, "Payment provider error, please retry")


@app.get("/subscription")
def get_subscription() -> Dict[str, Any]:
    """
    Get the user's tier, limits and asset usage
    """
    user_id = current_user_id()
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    profile = load_profile(profile_service, user_id)

    asset_service = AssetSubscriptionService(ASSET_SUBSCRIPTIONS_TABLE_NAME, profile_service=profile_service)
    asset_count = len(asset_service.list_subscriptions(user_id))
    return get_subscription_overview(profile, asset_count)


@app.get("/subscription/pricing")
def get_pricing_handler() -> Dict[str, Any]:
    """
    Get pricing tiers and their limits
    """
    return get_pricing()


@app.post("/subscription/cancel")
def cancel_subscription() -> Dict[str, Any]:
    """
    Cancel the user's main subscription
    Expected body: {"subscription_id": "sub_xxx"}
    """
    user_id = current_user_id()
    request = parse_body(SubscriptionIdRequest)
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    profile = load_profile(profile_service, user_id)

    try:
        result = BillingService(profile_service).cancel_subscription(profile, request.subscription_id)
    except (BillingError, stripe.StripeError) as exc:
        raise billing_error_response(exc, user_id)
    return {"success": True, "subscription": result}


@app.post("/subscription/change-plan")
def change_plan() -> Dict[str, Any]:
    """
    Move the subscription to another tier price
    Expected body: {"subscription_id": "sub_xxx", "tier": "pro"} or {"subscription_id": ..., "price_id": ...}
    """
    user_id = current_user_id()
    request = parse_body(ChangePlanRequest)
    new_price_id = request.price_id or (price_id_for_tier(request.tier) if request.tier else None)
    if not new_price_id:
        raise BadRequestError("A configured tier or price_id is required")

    profile_service = ProfileService(PROFILES_TABLE_NAME)
    profile = load_profile(profile_service, user_id)

    try:
        return BillingService(profile_service).change_subscription_price(
            profile, request.subscription_id, new_price_id
        )
    except (BillingError, stripe.StripeError) as exc:
        raise billing_error_response(exc, user_id)


@app.post("/subscription/portal")
def create_portal_session() -> Dict[str, Any]:
    user_id = current_user_id()
    request = parse_body(PortalRequest)
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    profile = load_profile(profile_service, user_id)

    try:
        url = BillingService(profile_service).create_portal_session(profile, request.return_url)
    except (BillingError, stripe.StripeError) as exc:
        raise billing_error_response(exc, user_id)
    return {"url": url}


@app.post("/subscription/additional-assets")
def add_additional_assets() -> Dict[str, Any]:
    """
    Buy extra asset slots on top of the tier allowance
    Expected body: {"subscription_id": "sub_xxx", "price_id": "price_xxx", "quantity": 2}
    """
    user_id = current_user_id()
    request = parse_body(AdditionalAssetsRequest)
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    profile = load_profile(profile_service, user_id)

    try:
        return BillingService(profile_service).add_additional_assets(
            profile, request.subscription_id, request.price_id, request.quantity
        )
    except (BillingError, stripe.StripeError) as exc:
        raise billing_error_response(exc, user_id)


@app.get("/subscription/additional-assets")
def list_additional_assets() -> Dict[str, Any]:
    """
    List the user's active add-on subscriptions for extra asset slots
    """
    user_id = current_user_id()
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    profile = load_profile(profile_service, user_id)

    try:
        subscriptions = BillingService(profile_service).list_additional_asset_subscriptions(profile)
    except (BillingError, stripe.StripeError) as exc:
        raise billing_error_response(exc, user_id)
    return {"subscriptions": subscriptions}


@app.post("/subscription/additional-assets/cancel")
def cancel_additional_assets() -> Dict[str, Any]:
    user_id = current_user_id()
    request = parse_body(SubscriptionIdRequest)
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    profile = load_profile(profile_service, user_id)

    try:
        return BillingService(profile_service).cancel_additional_asset_subscription(profile, request.subscription_id)
    except (BillingError, stripe.StripeError) as exc:
        raise billing_error_response(exc, user_id)


@app.post("/subscription/verify-session")
def verify_session() -> Dict[str, Any]:
    """
    Confirm a finished checkout and store the new tier on the profile
    Expected body: {"session_id": "cs_xxx"}
    """
    user_id = current_user_id()
    request = parse_body(SessionRequest)

    try:
        return BillingService(ProfileService(PROFILES_TABLE_NAME)).verify_checkout_session(
            user_id, request.session_id
        )
    except (BillingError, stripe.StripeError) as exc:
        raise billing_error_response(exc, user_id)


@app.post("/subscription/session")
def get_session_subscription() -> Dict[str, Any]:
    user_id = current_user_id()
    request = parse_body(SessionRequest)

    try:
        return BillingService(ProfileService(PROFILES_TABLE_NAME)).get_session_subscription(request.session_id)
    except (BillingError, stripe.StripeError) as exc:
        raise billing_error_response(exc, user_id)


def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda function handler.
    """
    return app.resolve(event, context)
