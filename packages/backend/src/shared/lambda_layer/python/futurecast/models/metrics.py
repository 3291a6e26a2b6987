from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

GLOBAL_ASSET_SLUG = "global"


class MetricCategory(str, Enum):
    FINANCIAL = "financial"
    SOCIAL = "social"
    ONCHAIN = "onchain"


class SyncStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    HISTORICAL_IN_PROGRESS = "historical_sync_in_progress"
    HISTORICAL_COMPLETED = "historical_sync_completed"
    HISTORICAL_FAILED = "historical_sync_failed"


class MetricDefinition(BaseModel):
    """A metric pulled from Santiment and the name it is stored under"""

    model_config = ConfigDict(frozen=True)

    type: str = Field(description="metric_type stored in the metrics table")
    category: MetricCategory
    santiment_metric: Optional[str] = Field(
        default=None, description="Santiment metric name; None for trending words queries"
    )
    interval: str = "1d"
    ohlc: bool = False
    include_incomplete_data: bool = False
    per_asset: bool = True


class MetricRecord(BaseModel):
    asset_slug: str
    metric_type: str
    metric_category: MetricCategory
    datetime: str
    value: Optional[float] = None
    ohlc_open: Optional[float] = None
    ohlc_high: Optional[float] = None
    ohlc_low: Optional[float] = None
    ohlc_close: Optional[float] = None
    json_data: Optional[List[Dict[str, Any]]] = None

    @property
    def sort_key(self) -> str:
        return f"{self.metric_type}#{self.datetime}"


class AssetSyncResult(BaseModel):
    slug: str
    metrics_processed: int = 0
    metrics_failed: int = 0
    datapoints_saved: int = 0
    errors: List[str] = Field(default_factory=list)
    skipped_metrics: List[str] = Field(default_factory=list)


class SyncResult(BaseModel):
    group: str
    assets: List[AssetSyncResult] = Field(default_factory=list)
    metrics_processed: int = 0
    metrics_failed: int = 0
    errors: List[str] = Field(default_factory=list)
    message: str = ""

    def add(self, asset_result: AssetSyncResult) -> None:
        self.assets.append(asset_result)
        self.metrics_processed += asset_result.metrics_processed
        self.metrics_failed += asset_result.metrics_failed
