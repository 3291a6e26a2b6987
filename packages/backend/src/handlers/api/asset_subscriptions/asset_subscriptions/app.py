import os
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

from futurecast.models.asset import (
    AssetLimitExceededError,
    AssetSubscriptionRequest,
    ReportLimitExceededError,
)
from futurecast.models.subscription import ProfileNotFoundError
from futurecast.services.asset_limit_service import AssetLimitService
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.metrics_store import MetricsStore
from futurecast.services.profile_service import ProfileService
from futurecast.services.report_service import ReportService
from futurecast.utils.auth import extract_user_id_from_event

from asset_subscriptions.models import ScheduleUpdateRequest
from asset_subscriptions.services import send_welcome_report, trigger_historical_sync

# Initialize the logger
logger = Logger()

# Retrieve environment variables
PROFILES_TABLE_NAME = os.environ.get("PROFILES_TABLE_NAME", "fc-profiles")
ASSET_SUBSCRIPTIONS_TABLE_NAME = os.environ.get("ASSET_SUBSCRIPTIONS_TABLE_NAME", "fc-asset-subscriptions")
ASSET_METRICS_TABLE_NAME = os.environ.get("ASSET_METRICS_TABLE_NAME", "fc-asset-metrics")
METRIC_SYNC_STATUS_TABLE_NAME = os.environ.get("METRIC_SYNC_STATUS_TABLE_NAME", "fc-metric-sync-status")
HISTORICAL_SYNC_FUNCTION_NAME = os.environ.get("HISTORICAL_SYNC_FUNCTION_NAME")

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


def build_services() -> Dict[str, Any]:
    profile_service = ProfileService(PROFILES_TABLE_NAME)
    metrics_store = MetricsStore(ASSET_METRICS_TABLE_NAME, METRIC_SYNC_STATUS_TABLE_NAME)
    asset_service = AssetSubscriptionService(
        ASSET_SUBSCRIPTIONS_TABLE_NAME,
        profile_service=profile_service,
        metrics_store=metrics_store,
    )
    limit_service = AssetLimitService(profile_service=profile_service, asset_subscription_service=asset_service)
    report_service = ReportService(
        asset_subscription_service=asset_service, profile_service=profile_service, store=metrics_store
    )
    return {"profiles": profile_service, "assets": asset_service, "limits": limit_service, "reports": report_service}


@app.get("/assets")
def list_assets() -> Dict[str, Any]:
    """
    List the assets tracked by the user, oldest first
    """
    user_id = current_user_id()
    subscriptions = build_services()["assets"].list_subscriptions(user_id)
    return {"assets": [s.model_dump(mode="json") for s in subscriptions]}


@app.post("/assets")
def save_asset() -> Dict[str, Any]:
    """
    Track an asset or update its report schedule
    Expected body: {"asset": {"slug": "bitcoin", "name": "Bitcoin", "symbol": "BTC"},
                    "report_times": ["08:00"], "report_days": "daily"}
    """
    user_id = current_user_id()
    try:
        request = AssetSubscriptionRequest(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")

    services = build_services()
    try:
        result = services["assets"].save_subscription(
            user_id, request.asset, request.report_times, request.report_days
        )
    except ProfileNotFoundError as exc:
        raise NotFoundError(str(exc))
    except (AssetLimitExceededError, ReportLimitExceededError) as exc:
        logger.info(f"Limit reached for user {user_id}: {str(exc)}")
        raise ServiceError(403, str(exc))

    historical_sync_triggered = False
    if result.needs_historical_sync:
        historical_sync_triggered = trigger_historical_sync(
            result.subscription.asset_slug, HISTORICAL_SYNC_FUNCTION_NAME
        )

    welcome_report_sent = False
    if result.created:
        welcome_report_sent = send_welcome_report(services["reports"], user_id, result.subscription.asset_slug)

    return {
        "subscription": result.subscription.model_dump(mode="json"),
        "created": result.created,
        "historical_sync_triggered": historical_sync_triggered,
        "welcome_report_sent": welcome_report_sent,
    }


@app.put("/assets/<asset_slug>/schedule")
def update_schedule(asset_slug: str) -> Dict[str, Any]:
    """
    Change the report times of a tracked asset
    Expected body: {"report_times": ["08:00", "20:00"], "report_days": "monday,friday"}
    """
    user_id = current_user_id()
    try:
        request = ScheduleUpdateRequest(**(app.current_event.json_body or {}))
    except (ValidationError, TypeError, ValueError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")

    try:
        updated = build_services()["assets"].update_report_times(
            user_id, asset_slug, request.report_times, request.report_days
        )
    except ProfileNotFoundError as exc:
        raise NotFoundError(str(exc))
    except ReportLimitExceededError as exc:
        raise ServiceError(403, str(exc))

    if not updated:
        raise NotFoundError(f"Asset {asset_slug} is not tracked")
    return {"success": True, "asset_slug": asset_slug.lower(), "report_times": request.report_times}


@app.delete("/assets/<asset_slug>")
def remove_asset(asset_slug: str) -> Dict[str, Any]:
    user_id = current_user_id()
    if not build_services()["assets"].remove_subscription(user_id, asset_slug):
        raise NotFoundError(f"Asset {asset_slug} is not tracked")
    return {"success": True, "asset_slug": asset_slug.lower()}


@app.get("/assets/limits")
def check_limits() -> Dict[str, Any]:
    user_id = current_user_id()
    try:
        return build_services()["limits"].check_asset_limits(user_id).model_dump()
    except ProfileNotFoundError as exc:
        raise NotFoundError(str(exc))


@app.post("/assets/limits/enforce")
def enforce_limits() -> Dict[str, Any]:
    """
    Drop the newest assets beyond the user's allowance
    """
    user_id = current_user_id()
    try:
        return build_services()["limits"].enforce_asset_limits(user_id).model_dump()
    except ProfileNotFoundError as exc:
        raise NotFoundError(str(exc))


def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda function handler.
    """
    return app.resolve(event, context)
