"""
Asset limit enforcement.

After a downgrade (cancellation, failed payment, expired trial) a user may
track more assets than the new tier allows. The oldest subscriptions are kept
and the newest ones beyond the allowance are removed.
"""

from typing import Optional

from aws_lambda_powertools import Logger

from futurecast.models.asset import AssetLimitCheck
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.profile_service import ProfileService

logger = Logger()


class AssetLimitService:
    def __init__(
        self,
        profile_service: Optional[ProfileService] = None,
        asset_subscription_service: Optional[AssetSubscriptionService] = None,
    ):
        self.profile_service = profile_service or ProfileService()
        self.asset_subscription_service = asset_subscription_service or AssetSubscriptionService(
            profile_service=self.profile_service
        )

    def check_asset_limits(self, user_id: str) -> AssetLimitCheck:
        """
        Compare the tracked assets of a user against their allowance.

        Raises:
            ProfileNotFoundError: If the user has no profile
        """
        profile = self.profile_service.require_profile(user_id)
        subscriptions = self.asset_subscription_service.list_subscriptions(user_id)
        max_allowed = profile.asset_allowance
        slugs = [s.asset_slug for s in subscriptions]

        return AssetLimitCheck(
            is_within_limit=len(slugs) <= max_allowed,
            current_asset_count=len(slugs),
            max_allowed=max_allowed,
            tier_name=profile.tier_name,
            excess_count=max(0, len(slugs) - max_allowed),
            kept_assets=slugs[:max_allowed],
            removed_assets=slugs[max_allowed:],
        )

    def enforce_asset_limits(self, user_id: str) -> AssetLimitCheck:
        check = self.check_asset_limits(user_id)
        if check.is_within_limit:
            return check

        logger.info(
            f"User {user_id} tracks {check.current_asset_count} assets, {check.tier_name} allows "
            f"{check.max_allowed}; removing {check.removed_assets}"
        )
        for slug in check.removed_assets:
            self.asset_subscription_service.remove_subscription(user_id, slug)

        result = self.check_asset_limits(user_id)
        result.removed_assets = check.removed_assets
        return result
