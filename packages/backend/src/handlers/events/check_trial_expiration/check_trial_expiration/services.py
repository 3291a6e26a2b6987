import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from futurecast.models.subscription import SubscriptionError
from futurecast.services.asset_limit_service import AssetLimitService
from futurecast.services.profile_service import ProfileService

logger = logging.getLogger(__name__)


def expire_trials(
    profile_service: ProfileService,
    asset_limit_service: AssetLimitService,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    End every trial whose end date has passed.

    The user loses trial status and tier, and assets beyond the trial
    allowance are removed.

    Returns:
        Dict with the number of expired trials and per-user errors
    """
    now = now or datetime.now(timezone.utc)
    expired = profile_service.list_expired_trials(now)
    logger.info(f"Found {len(expired)} expired trials")

    processed = 0
    errors = []
    for profile in expired:
        try:
            profile_service.update_profile(profile.user_id, is_trial_user=False, subscription_tier=None)
            asset_limit_service.enforce_asset_limits(profile.user_id)
            processed += 1
            logger.info(f"Trial expired for user {profile.user_id}")
        except (ClientError, BotoCoreError, SubscriptionError) as e:
            logger.error(f"Failed to expire trial for user {profile.user_id}: {str(e)}")
            errors.append({"user_id": profile.user_id, "error": str(e)})

    return {"expired_count": processed, "errors": errors}
