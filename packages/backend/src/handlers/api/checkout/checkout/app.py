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
from pydantic import ValidationError
from typing import Any, Dict

from futurecast.models.subscription import Profile
from futurecast.services.billing_service import BillingError, BillingService
from futurecast.services.profile_service import ProfileService
from futurecast.utils.auth import extract_user_email_from_event, extract_user_id_from_event

from checkout.models import CheckoutSessionRequest, RequestPurchaseRequest, SignupCheckoutRequest

# Initialize the logger
logger = Logger()

# Retrieve environment variables
PROFILES_TABLE_NAME = os.environ.get("PROFILES_TABLE_NAME", "fc-profiles")

# Configure CORS
cors_config = CORSConfig(
    allow_origin="*",  # In production, specify your actual domain
)

# Initialize the APIGatewayRestResolver
app = APIGatewayRestResolver(cors=cors_config)


def current_user_id() -> str:
    user_id = extract_user_id_from_event(app.current_event.raw_event)
    if not user_id:
        logger.error("No user_id found in JWT token")
        raise UnauthorizedError("Authentication required")
    return user_id


def load_profile(profile_service: ProfileService, user_id: str) -> Profile:
    profile = profile_service.get_profile(user_id)
    if profile is None:
        raise NotFoundError(f"Profile not found for user {user_id}")
    return profile


@app.post("/checkout/session")
def create_checkout_session() -> Dict[str, Any]:
    """
    Create a Stripe checkout session for a subscription or one-off payment
    Expected body: {"price_id": "price_xxx", "quantity": 1, "mode": "subscription"}
    """
    user_id = current_user_id()
    try:
        request = CheckoutSessionRequest(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")

    profile_service = ProfileService(PROFILES_TABLE_NAME)
    profile = load_profile(profile_service, user_id)

    try:
        return BillingService(profile_service).create_checkout_session(
            profile,
            request.price_id,
            quantity=request.quantity,
            mode=request.mode,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
            coupon_id=request.coupon_id,
            trial_period_days=request.trial_period_days,
        )
    except BillingError as exc:
        raise BadRequestError(str(exc))
    except stripe.StripeError as exc:
        logger.error(f"Error creating checkout session for {user_id}: {str(exc)}")
        raise ServiceError(502, "Failed to create checkout session")


@app.post("/checkout/signup")
def create_signup_checkout() -> Dict[str, Any]:
    """
    Checkout for the plan picked during sign-up
    Expected body: {"tier": "trial|basic|pro|elite", "first_name": "...", "last_name": "..."}
    """
    user_id = current_user_id()
    try:
        request = SignupCheckoutRequest(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")

    profile_service = ProfileService(PROFILES_TABLE_NAME)
    profile = profile_service.get_profile(user_id)
    if profile is None:
        # The confirmation trigger normally creates it; recover if it did not run
        logger.warning(f"No profile for user {user_id} at signup checkout, creating one")
        profile = profile_service.create_profile(
            user_id,
            email=extract_user_email_from_event(app.current_event.raw_event),
            first_name=request.first_name,
            last_name=request.last_name,
        )

    try:
        return BillingService(profile_service).create_signup_checkout(
            profile,
            request.tier,
            coupon_id=request.coupon_id,
            trial_period_days=request.trial_period_days,
        )
    except BillingError as exc:
        raise BadRequestError(str(exc))
    except stripe.StripeError as exc:
        logger.error(f"Error creating signup checkout for {user_id}: {str(exc)}")
        raise ServiceError(502, "Failed to create checkout session")


@app.post("/checkout/request-purchase")
def create_request_purchase() -> Dict[str, Any]:
    """
    One-off checkout for a chat request pack
    Expected body: {"package": 50|100|250}
    """
    user_id = current_user_id()
    try:
        request = RequestPurchaseRequest(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")

    try:
        return BillingService(ProfileService(PROFILES_TABLE_NAME)).create_request_purchase(user_id, request.package)
    except BillingError as exc:
        raise BadRequestError(str(exc))
    except stripe.StripeError as exc:
        logger.error(f"Error creating request purchase for {user_id}: {str(exc)}")
        raise ServiceError(502, "Failed to create checkout session")


def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda function handler.
    """
    return app.resolve(event, context)
