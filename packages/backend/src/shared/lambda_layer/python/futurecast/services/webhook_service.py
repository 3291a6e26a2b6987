"""
Stripe webhook processing.

Keeps profiles in step with Stripe subscription events and credits
purchased chat requests.
"""

import json
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe
from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError

from futurecast.models.subscription import PaymentStatus, SubscriptionError, SubscriptionTier
from futurecast.services.asset_limit_service import AssetLimitService
from futurecast.services.aws import get_ddb_table, get_parameter
from futurecast.services.billing_service import (
    REQUEST_PURCHASE_TYPE,
    field,
    first_item_price_id,
    is_additional_asset_subscription,
    object_id,
)
from futurecast.services.profile_service import ProfileService
from futurecast.services.subscription_service import tier_from_price_id

logger = Logger()


class WebhookError(Exception):
    """Base exception for webhook processing errors"""

    pass


class WebhookSignatureError(WebhookError):
    """Raised when the Stripe-Signature header is missing or invalid"""

    pass


class RequestPurchaseError(WebhookError):
    """Raised when a paid request pack could not be credited; Stripe retries the event"""

    pass


class WebhookService:
    def __init__(
        self,
        profile_service: Optional[ProfileService] = None,
        asset_limit_service: Optional[AssetLimitService] = None,
        purchases_table_name: Optional[str] = None,
    ):
        self.profile_service = profile_service or ProfileService()
        self.asset_limit_service = asset_limit_service or AssetLimitService(profile_service=self.profile_service)
        self.purchases_table = get_ddb_table(
            purchases_table_name or os.environ.get("REQUEST_PURCHASES_TABLE_NAME", "fc-request-purchases")
        )

    def construct_event(self, payload: str, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the Stripe signature of a webhook payload and decode it.

        Raises:
            WebhookSignatureError: If the signature is missing or does not match
        """
        if not signature:
            raise WebhookSignatureError("No signature")

        secret = get_parameter("stripe_webhook_signing_secret")
        if not secret:
            raise WebhookSignatureError("Webhook signing secret is not configured")

        try:
            stripe.WebhookSignature.verify_header(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Webhook Error: {e}") from e

        return json.loads(payload)

    def handle_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event.get("type")
        data_object = (event.get("data") or {}).get("object") or {}
        logger.info(f"Processing Stripe event {event.get('id')} of type {event_type}")

        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            self._subscription_changed(data_object)
        elif event_type == "customer.subscription.deleted":
            self._subscription_deleted(data_object)
        elif event_type == "invoice.payment_failed":
            self._invoice_payment_failed(data_object)
        elif event_type == "payment_intent.payment_failed":
            logger.warning(
                f"Payment intent {data_object.get('id')} failed for customer {data_object.get('customer')}, "
                "user can retry"
            )
        elif event_type == "checkout.session.completed":
            self._checkout_completed(data_object)
        else:
            logger.info(f"Ignoring unhandled event type {event_type}")

        return {"received": True}

    def _enforce_limits(self, user_id: str) -> None:
        try:
            result = self.asset_limit_service.enforce_asset_limits(user_id)
            if result.removed_assets:
                logger.info(f"Removed assets {result.removed_assets} from user {user_id} after downgrade")
        except SubscriptionError as e:
            logger.error(f"Could not enforce asset limits for user {user_id}: {e}")

    def _subscription_changed(self, subscription: Dict[str, Any]) -> None:
        if is_additional_asset_subscription(subscription):
            logger.info(f"Subscription {subscription.get('id')} is an additional asset add-on, tier unchanged")
            return

        customer_id = object_id(subscription.get("customer"))
        updates: Dict[str, Any] = {
            "stripe_subscription_id": subscription.get("id"),
            "stripe_customer_id": customer_id,
        }

        tier = tier_from_price_id(first_item_price_id(subscription))
        if tier is not None:
            updates.update(
                subscription_tier=tier,
                payment_status=PaymentStatus.OK,
                is_trial_user=tier == SubscriptionTier.TRIAL,
            )
        else:
            logger.warning(f"Subscription {subscription.get('id')} has no tier price, updating ids only")

        profile = self.profile_service.update_by_stripe_customer(customer_id, **updates)
        if profile and tier is not None:
            logger.info(f"User {profile.user_id} is now on the {tier.value} tier")

    def _subscription_deleted(self, subscription: Dict[str, Any]) -> None:
        if is_additional_asset_subscription(subscription):
            logger.info(f"Additional asset add-on {subscription.get('id')} ended, tier unchanged")
            return

        customer_id = object_id(subscription.get("customer"))
        profile = self.profile_service.update_by_stripe_customer(
            customer_id,
            stripe_subscription_id=None,
            subscription_tier=SubscriptionTier.TRIAL,
        )
        if profile:
            logger.info(f"Subscription {subscription.get('id')} deleted, user {profile.user_id} downgraded to trial")
            self._enforce_limits(profile.user_id)

    def _invoice_payment_failed(self, invoice: Dict[str, Any]) -> None:
        if invoice.get("billing_reason") != "subscription_cycle":
            logger.info(f"Ignoring failed invoice {invoice.get('id')} with reason {invoice.get('billing_reason')}")
            return

        customer_id = object_id(invoice.get("customer"))
        profile = self.profile_service.update_by_stripe_customer(
            customer_id,
            subscription_tier=None,
            stripe_subscription_id=None,
            payment_status=PaymentStatus.FAILED,
        )
        if profile:
            logger.warning(f"Renewal payment failed for user {profile.user_id}, subscription removed")
            self._enforce_limits(profile.user_id)

    def _checkout_completed(self, session: Dict[str, Any]) -> None:
        metadata = field(session, "metadata", {})
        if metadata.get("type") != REQUEST_PURCHASE_TYPE:
            return

        user_id = metadata.get("user_id")
        try:
            requests_purchased = int(metadata.get("requests"))
        except (TypeError, ValueError) as e:
            raise RequestPurchaseError(f"Invalid requests count on session {session.get('id')}") from e

        try:
            self.purchases_table.put_item(
                Item={
                    "purchase_id": session["id"],
                    "user_id": user_id,
                    "stripe_payment_intent_id": object_id(session.get("payment_intent")),
                    "requests_purchased": requests_purchased,
                    "amount_paid": Decimal(field(session, "amount_total", 0)) / 100,
                    "status": "completed",
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
                ConditionExpression="attribute_not_exists(purchase_id)",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.info(f"Request purchase {session['id']} already recorded")
                return
            raise RequestPurchaseError(f"Error recording purchase {session['id']}: {e}") from e

        try:
            total = self.profile_service.add_purchased_requests(user_id, requests_purchased)
        except (ClientError, SubscriptionError) as e:
            self.purchases_table.delete_item(Key={"purchase_id": session["id"]})
            raise RequestPurchaseError(f"Error crediting requests to user {user_id}: {e}") from e

        logger.info(f"Credited {requests_purchased} requests to user {user_id}, balance {total}")
