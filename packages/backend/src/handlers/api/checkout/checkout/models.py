from pydantic import BaseModel, Field
from typing import Literal, Optional

from futurecast.models.subscription import SubscriptionTier


class CheckoutSessionRequest(BaseModel):
    price_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)
    mode: Literal["subscription", "payment"] = "subscription"
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    coupon_id: Optional[str] = None
    trial_period_days: Optional[int] = Field(default=None, ge=1)


class SignupCheckoutRequest(BaseModel):
    tier: SubscriptionTier
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    coupon_id: Optional[str] = None
    trial_period_days: Optional[int] = Field(default=None, ge=1)


class RequestPurchaseRequest(BaseModel):
    package: int
