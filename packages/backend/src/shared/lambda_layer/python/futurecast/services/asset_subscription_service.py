"""
Asset Subscription Service

Stores which crypto assets a user tracks and when their reports go out.
"""

import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from futurecast.models.asset import (
    DAILY,
    AssetLimitExceededError,
    AssetSubscription,
    CryptoAsset,
    ReportLimitExceededError,
    SaveSubscriptionResult,
    parse_report_days,
    validate_report_times,
)
from futurecast.models.subscription import Profile
from futurecast.services.aws import get_ddb_table
from futurecast.services.metrics_store import MetricsStore
from futurecast.services.profile_service import ProfileService

logger = Logger()


def _to_item(subscription: AssetSubscription) -> Dict[str, Any]:
    return {k: v for k, v in subscription.model_dump(mode="json").items() if v is not None}


class AssetSubscriptionService:
    """Service for the user <-> tracked asset associations"""

    def __init__(
        self,
        table_name: Optional[str] = None,
        profile_service: Optional[ProfileService] = None,
        metrics_store: Optional[MetricsStore] = None,
    ):
        self.table_name = table_name or os.environ.get("ASSET_SUBSCRIPTIONS_TABLE_NAME", "fc-asset-subscriptions")
        self.table = get_ddb_table(self.table_name)
        self.profile_service = profile_service or ProfileService()
        self.metrics_store = metrics_store or MetricsStore()

    def get_subscription(self, user_id: str, asset_slug: str) -> Optional[AssetSubscription]:
        response = self.table.get_item(Key={"user_id": user_id, "asset_slug": asset_slug.lower()})
        item = response.get("Item")
        return AssetSubscription.model_validate(item) if item else None

    def list_subscriptions(self, user_id: str) -> List[AssetSubscription]:
        """All assets tracked by a user, oldest first."""
        items: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {"KeyConditionExpression": Key("user_id").eq(user_id)}
        while True:
            response = self.table.query(**kwargs)
            items.extend(response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                break
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

        subscriptions = [AssetSubscription.model_validate(item) for item in items]
        return sorted(subscriptions, key=lambda s: (s.created_at, s.asset_slug))

    def _check_report_limit(self, profile: Profile, report_times: List[str]) -> None:
        max_reports = profile.limits.max_reports_per_day
        if len(report_times) > max_reports:
            raise ReportLimitExceededError(profile.tier_name, max_reports)

    def _check_asset_limit_after_write(self, profile: Profile, subscription: AssetSubscription) -> None:
        """
        Undo a new row that landed beyond the allowance.

        Two concurrent saves can both pass the count check before writing.
        Rows are ranked oldest first and the ones past the allowance lose.
        """
        slugs = [s.asset_slug for s in self.list_subscriptions(profile.user_id)]
        if subscription.asset_slug in slugs[:profile.asset_allowance]:
            return

        self.table.delete_item(Key={"user_id": profile.user_id, "asset_slug": subscription.asset_slug})
        logger.warning(
            f"User {profile.user_id} went over the asset limit ({len(slugs)}/{profile.asset_allowance}) "
            f"by a concurrent save, removed {subscription.asset_slug}"
        )
        raise AssetLimitExceededError(profile.tier_name, profile.asset_allowance)

    def save_subscription(
        self,
        user_id: str,
        asset: CryptoAsset,
        report_times: List[str],
        report_days: str = DAILY,
    ) -> SaveSubscriptionResult:
        """
        Track an asset for a user, or update the schedule of one already tracked.

        Args:
            user_id: Owner of the subscription
            asset: Asset picked by the user
            report_times: HH:MM UTC delivery times
            report_days: "daily" or a comma separated list of weekdays

        Returns:
            SaveSubscriptionResult: Stored row, whether it was created and
            whether the asset still needs a historical backfill

        Raises:
            ProfileNotFoundError: If the user has no profile
            ReportLimitExceededError: If the schedule exceeds the tier
            AssetLimitExceededError: If a new asset exceeds the allowance
        """
        profile = self.profile_service.require_profile(user_id)
        report_times = validate_report_times(report_times)
        parse_report_days(report_days)
        self._check_report_limit(profile, report_times)

        slug = asset.normalized_slug
        existing = self.get_subscription(user_id, slug)

        if existing is None:
            current_count = len(self.list_subscriptions(user_id))
            if current_count >= profile.asset_allowance:
                logger.info(
                    f"User {user_id} at asset limit ({current_count}/{profile.asset_allowance}), refusing {slug}"
                )
                raise AssetLimitExceededError(profile.tier_name, profile.asset_allowance)

        subscription = AssetSubscription(
            user_id=user_id,
            asset_slug=slug,
            subscription_id=existing.subscription_id if existing else str(uuid.uuid4()),
            asset_name=asset.name,
            asset_symbol=asset.symbol,
            asset_icon=asset.icon,
            report_times=report_times,
            report_days=report_days,
            last_report_sent=existing.last_report_sent if existing else None,
            created_at=existing.created_at if existing else datetime.now(timezone.utc),
        )
        self.table.put_item(Item=_to_item(subscription))
        if existing is None:
            self._check_asset_limit_after_write(profile, subscription)

        needs_historical_sync = not self.metrics_store.metrics_exist(slug)
        logger.info(
            f"{'Created' if existing is None else 'Updated'} subscription to {slug} for user {user_id}, "
            f"needs_historical_sync={needs_historical_sync}"
        )
        return SaveSubscriptionResult(
            subscription=subscription,
            created=existing is None,
            needs_historical_sync=needs_historical_sync,
        )

    def update_report_times(
        self,
        user_id: str,
        asset_slug: str,
        report_times: List[str],
        report_days: Optional[str] = None,
    ) -> bool:
        """Change the schedule of a tracked asset. Returns False if it is not tracked."""
        profile = self.profile_service.require_profile(user_id)
        report_times = validate_report_times(report_times)
        self._check_report_limit(profile, report_times)

        update_expression = "SET report_times = :report_times"
        values: Dict[str, Any] = {":report_times": report_times}
        if report_days is not None:
            parse_report_days(report_days)
            update_expression += ", report_days = :report_days"
            values[":report_days"] = report_days.strip().lower()

        try:
            self.table.update_item(
                Key={"user_id": user_id, "asset_slug": asset_slug.lower()},
                UpdateExpression=update_expression,
                ExpressionAttributeValues=values,
                ConditionExpression="attribute_exists(user_id)",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.warning(f"User {user_id} does not track {asset_slug}")
                return False
            raise

        logger.info(f"Updated report times of {asset_slug} for user {user_id}: {report_times}")
        return True

    def remove_subscription(self, user_id: str, asset_slug: str) -> bool:
        response = self.table.delete_item(
            Key={"user_id": user_id, "asset_slug": asset_slug.lower()},
            ReturnValues="ALL_OLD",
        )
        removed = "Attributes" in response
        if removed:
            logger.info(f"Removed subscription to {asset_slug} for user {user_id}")
        return removed

    def list_all_subscriptions(self) -> List[AssetSubscription]:
        subscriptions: List[AssetSubscription] = []
        kwargs: Dict[str, Any] = {}
        while True:
            response = self.table.scan(**kwargs)
            subscriptions.extend(AssetSubscription.model_validate(item) for item in response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                break
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        return subscriptions

    def list_tracked_slugs(self) -> List[str]:
        """Distinct asset slugs tracked by at least one user."""
        return sorted({s.asset_slug for s in self.list_all_subscriptions()})

    def mark_report_sent(self, user_id: str, asset_slug: str, sent_at: Optional[datetime] = None) -> None:
        sent_at = sent_at or datetime.now(timezone.utc)
        self.table.update_item(
            Key={"user_id": user_id, "asset_slug": asset_slug.lower()},
            UpdateExpression="SET last_report_sent = :sent_at",
            ExpressionAttributeValues={":sent_at": sent_at.isoformat()},
        )
