import re
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DAILY = "daily"

_REPORT_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class AssetSubscriptionError(Exception):
    """Base exception for asset subscription errors"""

    pass


class AssetLimitExceededError(AssetSubscriptionError):
    """Raised when a new asset would exceed the tier's asset allowance"""

    def __init__(self, tier_name: str, max_allowed: int):
        super().__init__(
            f"Asset limit reached for {tier_name} tier ({max_allowed} assets). Upgrade or buy additional assets."
        )
        self.tier_name = tier_name
        self.max_allowed = max_allowed


class ReportLimitExceededError(AssetSubscriptionError):
    """Raised when a schedule asks for more reports per day than the tier allows"""

    def __init__(self, tier_name: str, max_reports_per_day: int):
        super().__init__(
            f"The {tier_name} tier allows up to {max_reports_per_day} report(s) per day."
        )
        self.tier_name = tier_name
        self.max_reports_per_day = max_reports_per_day


def validate_report_times(report_times: List[str]) -> List[str]:
    """Validate HH:MM (24h, UTC) report times, dropping duplicates and sorting."""
    for report_time in report_times:
        if not _REPORT_TIME_PATTERN.match(report_time):
            raise ValueError(f"Invalid report time '{report_time}', expected HH:MM")
    return sorted(set(report_times))


def parse_report_days(report_days: str) -> List[str]:
    """Return the weekday names of a schedule; 'daily' expands to every day."""
    value = (report_days or DAILY).strip().lower()
    if value == DAILY:
        return list(WEEKDAYS)
    days = [day.strip() for day in value.split(",") if day.strip()]
    for day in days:
        if day not in WEEKDAYS:
            raise ValueError(f"Invalid report day '{day}'")
    return days


class CryptoAsset(BaseModel):
    """Asset picked by the user in the selection screen"""

    slug: Optional[str] = None
    name: str
    symbol: str
    icon: Optional[str] = None

    @property
    def normalized_slug(self) -> str:
        return (self.slug or self.symbol).lower()


class AssetSubscription(BaseModel):
    user_id: str
    asset_slug: str
    subscription_id: str
    asset_name: str
    asset_symbol: str
    asset_icon: Optional[str] = None
    report_times: List[str] = Field(default_factory=list)
    report_days: str = DAILY
    last_report_sent: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("report_times")
    @classmethod
    def check_report_times(cls, value: List[str]) -> List[str]:
        return validate_report_times(value)

    @field_validator("report_days")
    @classmethod
    def check_report_days(cls, value: str) -> str:
        parse_report_days(value)
        return (value or DAILY).strip().lower()

    @field_validator("last_report_sent", "created_at")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def weekdays(self) -> List[str]:
        return parse_report_days(self.report_days)


class AssetSubscriptionRequest(BaseModel):
    """Body of POST /assets"""

    asset: CryptoAsset
    report_times: List[str] = Field(default_factory=list)
    report_days: str = DAILY

    @field_validator("report_times")
    @classmethod
    def check_report_times(cls, value: List[str]) -> List[str]:
        return validate_report_times(value)

    @model_validator(mode="after")
    def check_report_days(self) -> "AssetSubscriptionRequest":
        parse_report_days(self.report_days)
        return self


class SaveSubscriptionResult(BaseModel):
    subscription: AssetSubscription
    created: bool
    needs_historical_sync: bool = False


class AssetLimitCheck(BaseModel):
    is_within_limit: bool
    current_asset_count: int
    max_allowed: int
    tier_name: str
    excess_count: int
    kept_assets: List[str] = Field(default_factory=list)
    removed_assets: List[str] = Field(default_factory=list)
