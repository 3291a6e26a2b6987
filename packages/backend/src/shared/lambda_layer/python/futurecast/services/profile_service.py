"""
Profile Service for managing user profiles and their billing state.
"""

import os
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from futurecast.models.subscription import Profile, ProfileNotFoundError, SubscriptionError, SubscriptionTier, trial_end_from
from futurecast.services.aws import get_ddb_table

logger = Logger()

STRIPE_CUSTOMER_INDEX = "StripeCustomerIndex"


def _to_attribute(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def _from_item(item: Dict[str, Any]) -> Profile:
    data = {k: int(v) if isinstance(v, Decimal) else v for k, v in item.items()}
    return Profile.model_validate(data)


class ProfileService:
    """Service for reading and updating user profiles."""

    def __init__(self, table_name: Optional[str] = None):
        self.table_name = table_name or os.environ.get("PROFILES_TABLE_NAME", "fc-profiles")
        self.table = get_ddb_table(self.table_name)

    def get_profile(self, user_id: str) -> Optional[Profile]:
        try:
            response = self.table.get_item(Key={"user_id": user_id})
        except ClientError as e:
            logger.error(f"Error getting profile for {user_id}: {e}")
            raise SubscriptionError(f"Could not load profile for user {user_id}") from e

        item = response.get("Item")
        return _from_item(item) if item else None

    def require_profile(self, user_id: str) -> Profile:
        profile = self.get_profile(user_id)
        if profile is None:
            raise ProfileNotFoundError(user_id)
        return profile

    def create_profile(
        self,
        user_id: str,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Profile:
        """
        Create a profile on the trial tier.

        Args:
            user_id: Cognito sub of the user
            email: User email, used for reports and Stripe customers
            first_name: Optional given name
            last_name: Optional family name
            now: Creation time, defaults to the current UTC time

        Returns:
            Profile: The stored profile
        """
        now = now or datetime.now(timezone.utc)
        profile = Profile(
            user_id=user_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            subscription_tier=SubscriptionTier.TRIAL,
            is_trial_user=True,
            trial_end_date=trial_end_from(now),
            created_at=now,
            updated_at=now,
        )
        item = {k: v for k, v in profile.model_dump(mode="json").items() if v is not None}
        self.table.put_item(Item=item)
        logger.info(f"Created trial profile for user {user_id}, trial ends {profile.trial_end_date.isoformat()}")
        return profile

    def update_profile(self, user_id: str, **fields: Any) -> Profile:
        """
        Set the given fields on a profile. A None value removes the attribute.

        Raises:
            ProfileNotFoundError: If the profile does not exist
        """
        set_parts = ["updated_at = :updated_at"]
        remove_parts = []
        names: Dict[str, str] = {}
        values: Dict[str, Any] = {":updated_at": datetime.now(timezone.utc).isoformat()}

        for index, (field, value) in enumerate(fields.items()):
            names[f"#f{index}"] = field
            if value is None:
                remove_parts.append(f"#f{index}")
            else:
                set_parts.append(f"#f{index} = :v{index}")
                values[f":v{index}"] = _to_attribute(value)

        update_expression = "SET " + ", ".join(set_parts)
        if remove_parts:
            update_expression += " REMOVE " + ", ".join(remove_parts)

        kwargs: Dict[str, Any] = {
            "Key": {"user_id": user_id},
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": values,
            "ConditionExpression": "attribute_exists(user_id)",
            "ReturnValues": "ALL_NEW",
        }
        if names:
            kwargs["ExpressionAttributeNames"] = names

        try:
            response = self.table.update_item(**kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ProfileNotFoundError(user_id) from e
            logger.error(f"Error updating profile for {user_id}: {e}")
            raise SubscriptionError(f"Could not update profile for user {user_id}") from e

        logger.info(f"Updated profile for user {user_id}: {sorted(fields)}")
        return _from_item(response["Attributes"])

    def find_by_stripe_customer(self, customer_id: Optional[str]) -> Optional[Profile]:
        if not customer_id:
            return None
        response = self.table.query(
            IndexName=STRIPE_CUSTOMER_INDEX,
            KeyConditionExpression=Key("stripe_customer_id").eq(customer_id),
        )
        items = response.get("Items", [])
        if not items:
            return None
        if len(items) > 1:
            logger.warning(f"Several profiles share Stripe customer {customer_id}, using the first one")
        return _from_item(items[0])

    def update_by_stripe_customer(self, customer_id: str, **fields: Any) -> Optional[Profile]:
        profile = self.find_by_stripe_customer(customer_id)
        if profile is None:
            logger.warning(f"No profile found for Stripe customer {customer_id}")
            return None
        return self.update_profile(profile.user_id, **fields)

    def list_expired_trials(self, now: Optional[datetime] = None) -> List[Profile]:
        now = now or datetime.now(timezone.utc)
        filter_expression = Attr("is_trial_user").eq(True) & Attr("trial_end_date").lt(now.isoformat())

        profiles = []
        kwargs: Dict[str, Any] = {"FilterExpression": filter_expression}
        while True:
            response = self.table.scan(**kwargs)
            profiles.extend(_from_item(item) for item in response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                break
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        return profiles

    def add_purchased_requests(self, user_id: str, count: int) -> int:
        """Atomically add purchased chat requests and return the new balance."""
        try:
            response = self.table.update_item(
                Key={"user_id": user_id},
                UpdateExpression="ADD purchased_requests :count SET updated_at = :updated_at",
                ExpressionAttributeValues={
                    ":count": count,
                    ":updated_at": datetime.now(timezone.utc).isoformat(),
                },
                ConditionExpression="attribute_exists(user_id)",
                ReturnValues="UPDATED_NEW",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ProfileNotFoundError(user_id) from e
            raise

        total = int(response["Attributes"]["purchased_requests"])
        logger.info(f"Added {count} requests for user {user_id}, balance is now {total}")
        return total
