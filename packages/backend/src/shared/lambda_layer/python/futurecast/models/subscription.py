from datetime import datetime, timezone, timedelta
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Optional

from futurecast.constants.subscription_tiers import (
    TRIAL_MAX_ASSETS, TRIAL_MAX_REPORTS_PER_DAY, TRIAL_PRICE_USD, TRIAL_ADDITIONAL_ASSET_PRICE_USD,
    BASIC_MAX_ASSETS, BASIC_MAX_REPORTS_PER_DAY, BASIC_PRICE_USD, BASIC_ADDITIONAL_ASSET_PRICE_USD,
    PRO_MAX_ASSETS, PRO_MAX_REPORTS_PER_DAY, PRO_PRICE_USD, PRO_ADDITIONAL_ASSET_PRICE_USD,
    ELITE_MAX_ASSETS, ELITE_MAX_REPORTS_PER_DAY, ELITE_PRICE_USD, ELITE_ADDITIONAL_ASSET_PRICE_USD,
    ELITE_ADDITIONAL_REPORT_PRICE_USD, TRIAL_DAYS,
)


class SubscriptionError(Exception):
    """Base exception for subscription and profile errors"""

    pass


class ProfileNotFoundError(SubscriptionError):
    """Raised when no profile exists for the requested user"""

    def __init__(self, user_id: str):
        super().__init__(f"Profile not found for user {user_id}.")
        self.user_id = user_id


class SubscriptionTier(str, Enum):
    TRIAL = "trial"
    BASIC = "basic"
    PRO = "pro"
    ELITE = "elite"


class PaymentStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"


class TierLimits(BaseModel):
    """Limits and prices attached to a subscription tier"""

    max_assets: int
    max_reports_per_day: int
    price_usd: float
    additional_asset_price_usd: float
    additional_report_price_usd: Optional[float] = None

    @classmethod
    def for_tier(cls, tier: Optional[SubscriptionTier]) -> "TierLimits":
        """Return limits for a tier; users without a tier get the trial limits."""
        if tier == SubscriptionTier.BASIC:
            return cls(
                max_assets=BASIC_MAX_ASSETS,
                max_reports_per_day=BASIC_MAX_REPORTS_PER_DAY,
                price_usd=BASIC_PRICE_USD,
                additional_asset_price_usd=BASIC_ADDITIONAL_ASSET_PRICE_USD,
            )
        if tier == SubscriptionTier.PRO:
            return cls(
                max_assets=PRO_MAX_ASSETS,
                max_reports_per_day=PRO_MAX_REPORTS_PER_DAY,
                price_usd=PRO_PRICE_USD,
                additional_asset_price_usd=PRO_ADDITIONAL_ASSET_PRICE_USD,
            )
        if tier == SubscriptionTier.ELITE:
            return cls(
                max_assets=ELITE_MAX_ASSETS,
                max_reports_per_day=ELITE_MAX_REPORTS_PER_DAY,
                price_usd=ELITE_PRICE_USD,
                additional_asset_price_usd=ELITE_ADDITIONAL_ASSET_PRICE_USD,
                additional_report_price_usd=ELITE_ADDITIONAL_REPORT_PRICE_USD,
            )
        return cls(
            max_assets=TRIAL_MAX_ASSETS,
            max_reports_per_day=TRIAL_MAX_REPORTS_PER_DAY,
            price_usd=TRIAL_PRICE_USD,
            additional_asset_price_usd=TRIAL_ADDITIONAL_ASSET_PRICE_USD,
        )


class Profile(BaseModel):
    user_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    subscription_tier: Optional[SubscriptionTier] = Field(
        default=None, description="Current tier, None once a trial expired or a payment failed"
    )
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    is_trial_user: bool = False
    trial_end_date: Optional[datetime] = None
    payment_status: PaymentStatus = PaymentStatus.OK
    additional_assets: int = Field(default=0, ge=0)
    purchased_requests: int = Field(default=0, ge=0)
    welcome_report_sent: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("trial_end_date", "created_at", "updated_at")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def limits(self) -> TierLimits:
        return TierLimits.for_tier(self.subscription_tier)

    @property
    def tier_name(self) -> str:
        return self.subscription_tier.value if self.subscription_tier else SubscriptionTier.TRIAL.value

    @property
    def asset_allowance(self) -> int:
        """Tier asset limit plus purchased additional assets."""
        return self.limits.max_assets + self.additional_assets

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def trial_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.is_trial_user or self.trial_end_date is None:
            return False
        return (now or datetime.now(timezone.utc)) > self.trial_end_date


def trial_end_from(start: datetime) -> datetime:
    return start + timedelta(days=TRIAL_DAYS)
