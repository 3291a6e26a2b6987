"""
Subscription tier helpers for FutureCast.

Maps tiers to their limits, Stripe prices and display labels, and builds the
subscription overview returned to the dashboard.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aws_lambda_powertools import Logger

from futurecast.constants.subscription_tiers import (
    BILLING_INTERVAL,
    CURRENCY,
    CURRENCY_SYMBOL,
    REQUEST_PACKAGES,
    TRIAL_DAYS,
    TRIAL_DESCRIPTION,
    BASIC_DESCRIPTION,
    PRO_DESCRIPTION,
    ELITE_DESCRIPTION,
    UNLIMITED_ASSETS_THRESHOLD,
)
from futurecast.models.subscription import Profile, SubscriptionTier, TierLimits

logger = Logger()

_DESCRIPTIONS = {
    SubscriptionTier.TRIAL: TRIAL_DESCRIPTION,
    SubscriptionTier.BASIC: BASIC_DESCRIPTION,
    SubscriptionTier.PRO: PRO_DESCRIPTION,
    SubscriptionTier.ELITE: ELITE_DESCRIPTION,
}


def get_tier_limits(tier: Optional[SubscriptionTier]) -> TierLimits:
    return TierLimits.for_tier(tier)


def price_id_for_tier(tier: SubscriptionTier) -> Optional[str]:
    """Monthly Stripe price configured for a tier (STRIPE_<TIER>_PRICE_ID)."""
    return os.environ.get(f"STRIPE_{tier.value.upper()}_PRICE_ID") or None


def tier_from_price_id(price_id: Optional[str]) -> Optional[SubscriptionTier]:
    """
    Map a Stripe price id back to its tier.

    Args:
        price_id: Stripe price id of the first subscription item

    Returns:
        SubscriptionTier or None when the price is not a tier price
    """
    if not price_id:
        return None
    for tier in SubscriptionTier:
        if price_id_for_tier(tier) == price_id:
            return tier
    logger.warning(f"Price {price_id} does not match any configured tier")
    return None


def price_id_for_request_package(package: int) -> Optional[str]:
    if package not in REQUEST_PACKAGES:
        return None
    return os.environ.get(f"STRIPE_REQUESTS_{package}_PRICE_ID") or None


def _assets_label(max_assets: int) -> str:
    if max_assets >= UNLIMITED_ASSETS_THRESHOLD:
        return "Unlimited assets"
    if max_assets == 1:
        return "1 asset"
    return f"Up to {max_assets} assets"


def _reports_label(max_reports_per_day: int) -> str:
    if max_reports_per_day == 1:
        return "1 report per day"
    return f"Up to {max_reports_per_day} reports per day"


def describe_tier(tier: Optional[SubscriptionTier]) -> Dict[str, Any]:
    """Display labels for a tier, as shown on the pricing and settings pages."""
    tier = tier or SubscriptionTier.TRIAL
    limits = get_tier_limits(tier)

    if tier == SubscriptionTier.TRIAL:
        price_label = f"Free for {TRIAL_DAYS} days"
    else:
        price_label = f"{CURRENCY_SYMBOL}{limits.price_usd:.2f}/{BILLING_INTERVAL}"

    return {
        "tier": tier.value,
        "name": tier.value.capitalize(),
        "description": _DESCRIPTIONS[tier],
        "price_label": price_label,
        "assets_label": _assets_label(limits.max_assets),
        "reports_label": _reports_label(limits.max_reports_per_day),
    }


def get_pricing() -> Dict[str, Any]:
    """Public pricing table."""
    tiers = []
    for tier in SubscriptionTier:
        limits = get_tier_limits(tier)
        tiers.append({
            **describe_tier(tier),
            "limits": limits.model_dump(),
            "unlimited_assets": limits.max_assets >= UNLIMITED_ASSETS_THRESHOLD,
            "price_id": price_id_for_tier(tier),
        })

    return {
        "currency": CURRENCY,
        "billing_interval": BILLING_INTERVAL,
        "trial_days": TRIAL_DAYS,
        "tiers": tiers,
        "request_packages": [
            {"requests": requests, "price_cents": price_cents}
            for requests, price_cents in sorted(REQUEST_PACKAGES.items())
        ],
    }


def get_subscription_overview(profile: Profile, asset_count: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Subscription state for the dashboard.

    Args:
        profile: The user's profile
        asset_count: Number of assets the user currently tracks
        now: Reference time for trial days remaining

    Returns:
        Dict with tier, limits, usage and trial details
    """
    now = now or datetime.now(timezone.utc)
    limits = profile.limits
    allowance = profile.asset_allowance

    trial_days_remaining = None
    if profile.is_trial_user and profile.trial_end_date:
        trial_days_remaining = max(0, (profile.trial_end_date - now).days)

    return {
        "subscription_tier": profile.subscription_tier.value if profile.subscription_tier else None,
        "tier": describe_tier(profile.subscription_tier),
        "payment_status": profile.payment_status.value,
        "stripe_subscription_id": profile.stripe_subscription_id,
        "is_trial_user": profile.is_trial_user,
        "trial_end_date": profile.trial_end_date.isoformat() if profile.trial_end_date else None,
        "trial_days_remaining": trial_days_remaining,
        "limits": limits.model_dump(),
        "usage": {
            "assets": {
                "used": asset_count,
                "allowed": allowance,
                "additional_assets": profile.additional_assets,
                "unlimited": limits.max_assets >= UNLIMITED_ASSETS_THRESHOLD,
                "remaining": max(0, allowance - asset_count),
            },
            "purchased_requests": profile.purchased_requests,
        },
    }
