"""
Billing Service for FutureCast

Wraps Stripe customers, checkout sessions, subscriptions and the customer
portal, and keeps the user profile in step with them.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import stripe
from aws_lambda_powertools import Logger

from futurecast.constants.subscription_tiers import REQUEST_PACKAGES, TRIAL_UPGRADE_TIER
from futurecast.models.subscription import Profile, SubscriptionError, SubscriptionTier, trial_end_from
from futurecast.services.aws import get_parameter
from futurecast.services.profile_service import ProfileService
from futurecast.services.subscription_service import (
    price_id_for_request_package,
    price_id_for_tier,
    tier_from_price_id,
)

logger = Logger()

STRIPE_API_VERSION = "2023-10-16"
PLACEHOLDER_COUPON_ID = "your_coupon_id_here"
REQUEST_PURCHASE_TYPE = "request_purchase"


class BillingError(Exception):
    """Base exception for billing errors"""

    pass


class InvalidSubscriptionError(BillingError):
    """Raised when a subscription does not belong to the requesting user"""

    pass


class CustomerNotFoundError(BillingError):
    """Raised when the user has no Stripe customer yet"""

    pass


class CheckoutVerificationError(BillingError):
    """Raised when a checkout session is not complete or not paid"""

    pass


def field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a Stripe object or plain dict, treating null as missing."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def object_id(value: Any) -> Optional[str]:
    """Id of an expandable Stripe field, which is either an id string or an object."""
    if value is None or isinstance(value, str):
        return value
    return field(value, "id")


def first_item_price_id(subscription: Any) -> Optional[str]:
    items = field(field(subscription, "items", {}), "data", [])
    if not items:
        return None
    return object_id(field(items[0], "price"))


def is_additional_asset_subscription(subscription: Any) -> bool:
    return field(field(subscription, "metadata", {}), "additional_asset") == "true"


def item_quantity(subscription: Any) -> int:
    """Total quantity over the subscription's items."""
    items = field(field(subscription, "items", {}), "data", [])
    return sum(int(field(item, "quantity", 1)) for item in items)


def configure_stripe() -> str:
    """Set the Stripe key and API version. Returns the secret key."""
    secret_key = get_parameter("stripe_secret_key")
    if not secret_key:
        raise BillingError("Stripe secret key is not configured")
    stripe.api_key = secret_key
    stripe.api_version = STRIPE_API_VERSION
    return secret_key


def frontend_url() -> str:
    return os.environ.get("FRONTEND_URL", "https://futurecast.pro").rstrip("/")


class BillingService:
    """Service for Stripe billing operations"""

    def __init__(self, profile_service: Optional[ProfileService] = None):
        self.profile_service = profile_service or ProfileService()
        self.secret_key = configure_stripe()

    @property
    def live_mode(self) -> bool:
        return self.secret_key.startswith("sk_live")

    def get_or_create_customer(self, profile: Profile, name: Optional[str] = None) -> str:
        """
        Return the profile's Stripe customer, creating one when needed.

        In live mode a stored id is checked against Stripe and replaced if
        Stripe no longer knows it.

        Args:
            profile: The user's profile
            name: Customer name, defaults to the profile's full name

        Returns:
            str: Stripe customer id
        """
        customer_id = profile.stripe_customer_id

        if customer_id and self.live_mode:
            try:
                stripe.Customer.retrieve(customer_id)
            except stripe.InvalidRequestError as e:
                logger.warning(f"Stored customer {customer_id} missing in Stripe for user {profile.user_id}: {e}")
                customer_id = None

        if customer_id:
            return customer_id

        params: Dict[str, Any] = {"metadata": {"user_id": profile.user_id}}
        if profile.email:
            params["email"] = profile.email
        customer_name = name or profile.full_name
        if customer_name:
            params["name"] = customer_name

        customer = stripe.Customer.create(**params)
        customer_id = customer["id"]
        self.profile_service.update_profile(profile.user_id, stripe_customer_id=customer_id)
        logger.info(f"Created Stripe customer {customer_id} for user {profile.user_id}")
        return customer_id

    def create_checkout_session(
        self,
        profile: Profile,
        price_id: str,
        quantity: int = 1,
        mode: str = "subscription",
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        coupon_id: Optional[str] = None,
        trial_period_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        if not price_id:
            raise BillingError("Price ID is required")
        if mode not in ("subscription", "payment"):
            raise BillingError(f"Unsupported checkout mode {mode}")

        customer_id = self.get_or_create_customer(profile)
        params: Dict[str, Any] = {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": quantity}],
            "mode": mode,
            "success_url": success_url or f"{frontend_url()}/subscription-success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": cancel_url or f"{frontend_url()}/subscription-canceled",
            "allow_promotion_codes": True,
            "metadata": {
                "user_id": profile.user_id,
                "additional_assets": str(quantity),
            },
        }

        if coupon_id and coupon_id != PLACEHOLDER_COUPON_ID:
            params["discounts"] = [{"coupon": coupon_id}]
            del params["allow_promotion_codes"]

        if mode == "subscription":
            subscription_data: Dict[str, Any] = {"metadata": {"user_id": profile.user_id}}
            if trial_period_days:
                subscription_data["trial_period_days"] = trial_period_days
            params["subscription_data"] = subscription_data

        session = stripe.checkout.Session.create(**params)
        logger.info(f"Created {mode} checkout session {session['id']} for user {profile.user_id}")
        return {"session_id": session["id"], "url": field(session, "url")}

    def create_signup_checkout(
        self,
        profile: Profile,
        tier: SubscriptionTier,
        coupon_id: Optional[str] = None,
        trial_period_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Checkout for the plan picked at sign-up.

        The trial tier is a $0 subscription flagged for an automatic upgrade
        once the trial ends.
        """
        price_id = price_id_for_tier(tier)
        if not price_id:
            raise BillingError(f"Price ID not configured for tier {tier.value}")

        if tier != SubscriptionTier.TRIAL:
            return self.create_checkout_session(
                profile,
                price_id,
                coupon_id=coupon_id,
                trial_period_days=trial_period_days,
            )

        now = now or datetime.now(timezone.utc)
        customer_id = self.get_or_create_customer(profile)
        metadata = {"user_id": profile.user_id, "subscription_tier": tier.value}
        session = stripe.checkout.Session.create(
            customer=customer_id,
            payment_method_types=["card"],
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{frontend_url()}/subscription-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend_url()}/subscription-canceled",
            metadata=metadata,
            subscription_data={
                "metadata": {
                    **metadata,
                    "trial_ends_at": trial_end_from(now).isoformat(),
                    "should_upgrade_to": TRIAL_UPGRADE_TIER,
                }
            },
        )
        logger.info(f"Created trial checkout session {session['id']} for user {profile.user_id}")
        return {"session_id": session["id"], "url": field(session, "url")}

    def create_request_purchase(self, user_id: str, package: int) -> Dict[str, Any]:
        """One-off checkout for a pack of chat requests."""
        price_id = price_id_for_request_package(package)
        if not price_id:
            raise BillingError(f"Invalid package selected: {package}. Available: {sorted(REQUEST_PACKAGES)}")

        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            mode="payment",
            success_url=f"{frontend_url()}/dashboard?purchase=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend_url()}/dashboard?purchase=cancelled",
            metadata={
                "user_id": user_id,
                "requests": str(package),
                "type": REQUEST_PURCHASE_TYPE,
            },
        )
        logger.info(f"Created request purchase session {session['id']} for user {user_id} ({package} requests)")
        return {"session_id": session["id"], "url": field(session, "url")}

    def create_portal_session(self, profile: Profile, return_url: Optional[str] = None) -> str:
        if not profile.stripe_customer_id:
            raise CustomerNotFoundError(f"No Stripe customer for user {profile.user_id}")
        session = stripe.billing_portal.Session.create(
            customer=profile.stripe_customer_id,
            return_url=return_url or f"{frontend_url()}/settings",
        )
        return session["url"]

    def _check_ownership(self, profile: Profile, subscription_id: str) -> None:
        if not subscription_id or profile.stripe_subscription_id != subscription_id:
            logger.warning(f"User {profile.user_id} does not own subscription {subscription_id}")
            raise InvalidSubscriptionError("Invalid subscription")

    def cancel_subscription(self, profile: Profile, subscription_id: str) -> Dict[str, Any]:
        """
        Cancel the user's main subscription immediately.

        A subscription Stripe no longer knows is treated as already canceled.
        """
        self._check_ownership(profile, subscription_id)

        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
            if field(subscription, "status") == "canceled":
                logger.info(f"Subscription {subscription_id} already canceled")
                result = {"id": subscription_id, "status": "canceled"}
            else:
                canceled = stripe.Subscription.cancel(subscription_id)
                result = {"id": canceled["id"], "status": field(canceled, "status", "canceled")}
        except stripe.InvalidRequestError as e:
            if e.code != "resource_missing":
                raise
            logger.info(f"Subscription {subscription_id} not found in Stripe, treating as canceled")
            result = {"id": subscription_id, "status": "canceled"}

        self.profile_service.update_profile(profile.user_id, stripe_subscription_id=None)
        logger.info(f"Canceled subscription {subscription_id} for user {profile.user_id}")
        return result

    def change_subscription_price(self, profile: Profile, subscription_id: str, new_price_id: str) -> Dict[str, Any]:
        self._check_ownership(profile, subscription_id)
        if not new_price_id:
            raise BillingError("New price ID is required")

        subscription = stripe.Subscription.retrieve(subscription_id)
        if first_item_price_id(subscription) == new_price_id:
            return {"subscription_id": subscription_id, "message": "Subscription already has this price"}

        first_item = field(field(subscription, "items", {}), "data", [])[0]
        updated = stripe.Subscription.modify(
            subscription_id,
            items=[{"id": first_item["id"], "price": new_price_id}],
            proration_behavior="create_prorations",
            payment_behavior="default_incomplete",
            expand=["latest_invoice.payment_intent"],
        )
        logger.info(f"Changed price of subscription {subscription_id} to {new_price_id} for user {profile.user_id}")
        return {
            "subscription_id": updated["id"],
            "client_secret": field(field(field(updated, "latest_invoice"), "payment_intent"), "client_secret"),
        }

    def add_additional_assets(
        self, profile: Profile, subscription_id: str, price_id: str, quantity: int
    ) -> Dict[str, Any]:
        self._check_ownership(profile, subscription_id)
        if quantity < 1:
            raise BillingError("Quantity must be at least 1")

        updated = stripe.Subscription.modify(
            subscription_id,
            items=[{"price": price_id, "quantity": quantity}],
            proration_behavior="create_prorations",
            payment_behavior="default_incomplete",
            expand=["latest_invoice.payment_intent"],
        )
        self.profile_service.update_profile(
            profile.user_id, additional_assets=profile.additional_assets + quantity
        )
        logger.info(f"Added {quantity} additional assets to subscription {subscription_id} for user {profile.user_id}")
        return {
            "subscription_id": updated["id"],
            "client_secret": field(field(field(updated, "latest_invoice"), "payment_intent"), "client_secret"),
        }

    def list_additional_asset_subscriptions(self, profile: Profile) -> List[Dict[str, Any]]:
        """Active add-on subscriptions for extra asset slots, oldest first."""
        if not profile.stripe_customer_id:
            raise CustomerNotFoundError(f"No Stripe customer for user {profile.user_id}")

        subscriptions = stripe.Subscription.list(
            customer=profile.stripe_customer_id,
            status="active",
            expand=["data.items.data.price"],
        )
        add_ons = [
            s for s in subscriptions.auto_paging_iter()
            if is_additional_asset_subscription(s)
        ]
        add_ons.sort(key=lambda s: field(s, "created", 0))

        return [
            {
                "id": s["id"],
                "status": field(s, "status"),
                "quantity": item_quantity(s),
                "price_id": first_item_price_id(s),
                "created": field(s, "created"),
                "current_period_end": field(s, "current_period_end"),
            }
            for s in add_ons
        ]

    def cancel_additional_asset_subscription(self, profile: Profile, subscription_id: str) -> Dict[str, Any]:
        """Cancel an add-on subscription and give back its asset slots."""
        subscription = stripe.Subscription.retrieve(subscription_id)
        if not profile.stripe_customer_id or object_id(field(subscription, "customer")) != profile.stripe_customer_id:
            raise InvalidSubscriptionError("Subscription not found or unauthorized")
        if not is_additional_asset_subscription(subscription):
            raise BillingError("Not an additional asset subscription")

        canceled = stripe.Subscription.cancel(subscription_id)
        quantity = item_quantity(subscription)
        remaining = max(0, profile.additional_assets - quantity)
        self.profile_service.update_profile(profile.user_id, additional_assets=remaining)
        logger.info(
            f"Canceled additional asset subscription {subscription_id} for user {profile.user_id}, "
            f"additional assets {profile.additional_assets} -> {remaining}"
        )
        return {
            "id": canceled["id"],
            "status": field(canceled, "status", "canceled"),
            "additional_assets": remaining,
        }

    def verify_checkout_session(self, user_id: str, session_id: str) -> Dict[str, Any]:
        """
        Confirm a completed checkout and store its customer, subscription and tier.

        The session must carry the user's id in its metadata or belong to
        the user's Stripe customer.

        Raises:
            CheckoutVerificationError: If the session is incomplete, unpaid,
            owned by someone else or its price is not a tier price
        """
        session = stripe.checkout.Session.retrieve(session_id, expand=["line_items", "subscription", "customer"])

        status = field(session, "status")
        if status != "complete":
            raise CheckoutVerificationError(f"Session not complete. Status: {status}")

        metadata = field(session, "metadata", {})
        is_trial = field(session, "amount_total") == 0 or field(metadata, "subscription_tier") == SubscriptionTier.TRIAL.value
        payment_status = field(session, "payment_status")
        if not is_trial and payment_status != "paid":
            raise CheckoutVerificationError(f"Payment not successful. Status: {payment_status}")

        customer_id = object_id(field(session, "customer"))
        if not customer_id:
            raise CheckoutVerificationError("Stripe customer not found in session")

        if field(metadata, "user_id") != user_id:
            profile = self.profile_service.get_profile(user_id)
            if profile is None or profile.stripe_customer_id != customer_id:
                logger.warning(f"User {user_id} tried to verify checkout session {session_id} of another user")
                raise CheckoutVerificationError("Checkout session does not belong to this user")

        line_items = field(field(session, "line_items", {}), "data", [])
        if not line_items or not field(line_items[0], "price"):
            raise CheckoutVerificationError("No line items or price found in session")
        price_id = object_id(field(line_items[0], "price"))
        tier = tier_from_price_id(price_id)
        if tier is None:
            raise CheckoutVerificationError(f"Tier with Stripe price ID {price_id} not found")

        updates: Dict[str, Any] = {
            "stripe_customer_id": customer_id,
            "subscription_tier": tier,
            "is_trial_user": tier == SubscriptionTier.TRIAL,
        }
        subscription_id = object_id(field(session, "subscription"))
        if subscription_id:
            updates["stripe_subscription_id"] = subscription_id

        self.profile_service.update_profile(user_id, **updates)
        logger.info(f"Verified checkout session {session_id} for user {user_id}, tier {tier.value}")
        return {"success": True, "subscription_tier": tier.value, "subscription_id": subscription_id}

    def get_session_subscription(self, session_id: str) -> Dict[str, Any]:
        session = stripe.checkout.Session.retrieve(session_id, expand=["subscription"])
        subscription = field(session, "subscription")
        if not subscription:
            raise BillingError("No subscription found for this session")
        if isinstance(subscription, str):
            subscription = stripe.Subscription.retrieve(subscription)

        tier = tier_from_price_id(first_item_price_id(subscription))
        return {
            "subscription_id": subscription["id"],
            "subscription_tier": tier.value if tier else None,
            "status": field(subscription, "status"),
            "current_period_end": field(subscription, "current_period_end"),
        }

    def upgrade_trial_users(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Move trial subscriptions whose trial ended onto the basic plan.

        Returns:
            Dict with the number upgraded and per-subscription errors
        """
        now = now or datetime.now(timezone.utc)
        basic_price_id = price_id_for_tier(SubscriptionTier(TRIAL_UPGRADE_TIER))
        upgraded: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        if not basic_price_id:
            raise BillingError("Basic price ID is not configured")

        for subscription in stripe.Subscription.list(status="active", limit=100).auto_paging_iter():
            metadata = field(subscription, "metadata", {})
            trial_ends_at = field(metadata, "trial_ends_at")
            if field(metadata, "should_upgrade_to") != TRIAL_UPGRADE_TIER or not trial_ends_at:
                continue

            subscription_id = subscription["id"]
            try:
                trial_end = datetime.fromisoformat(trial_ends_at.replace("Z", "+00:00"))
                if trial_end.tzinfo is None:
                    trial_end = trial_end.replace(tzinfo=timezone.utc)
                if now < trial_end:
                    logger.debug(f"Trial not yet ended for subscription {subscription_id}, ends at {trial_ends_at}")
                    continue

                customer_id = object_id(field(subscription, "customer"))
                logger.info(f"Upgrading subscription {subscription_id} from trial to {TRIAL_UPGRADE_TIER}")
                stripe.Subscription.cancel(subscription_id)
                new_subscription = stripe.Subscription.create(
                    customer=customer_id,
                    items=[{"price": basic_price_id}],
                    metadata={
                        "user_id": field(metadata, "user_id", ""),
                        "subscription_tier": TRIAL_UPGRADE_TIER,
                        "upgraded_from_trial": "true",
                    },
                )
                self.profile_service.update_by_stripe_customer(
                    customer_id,
                    subscription_tier=SubscriptionTier(TRIAL_UPGRADE_TIER),
                    stripe_subscription_id=new_subscription["id"],
                    is_trial_user=False,
                )
                upgraded.append({
                    "customer": customer_id,
                    "old_subscription_id": subscription_id,
                    "new_subscription_id": new_subscription["id"],
                })
            except (stripe.StripeError, BillingError, SubscriptionError, ValueError) as e:
                logger.error(f"Failed to upgrade subscription {subscription_id}: {e}")
                errors.append({"subscription_id": subscription_id, "error": str(e)})

        return {
            "success": True,
            "upgraded": len(upgraded),
            "errors": len(errors),
            "details": {"upgraded_users": upgraded, "errors": errors},
        }
