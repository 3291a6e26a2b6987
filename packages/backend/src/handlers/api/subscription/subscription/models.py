from pydantic import BaseModel, Field
from typing import Optional

from futurecast.models.subscription import SubscriptionTier


class SubscriptionIdRequest(BaseModel):
    subscription_id: str = Field(min_length=1)


class ChangePlanRequest(SubscriptionIdRequest):
    tier: Optional[SubscriptionTier] = None
    price_id: Optional[str] = None


class PortalRequest(BaseModel):
    return_url: Optional[str] = None


class AdditionalAssetsRequest(SubscriptionIdRequest):
    price_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class SessionRequest(BaseModel):
    session_id: str = Field(min_length=1)
