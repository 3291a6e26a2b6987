"""
Metrics Sync Service

Polls Santiment for every tracked asset and upserts the results into the
asset metrics table. Each sync is a plain fetch-then-upsert loop: failures
are logged and counted per metric and never stop the loop.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from futurecast.constants.metrics import (
    DAILY_METRICS,
    HISTORICAL_LOOKBACK_DAYS,
    METRIC_GROUPS,
    SYNC_WINDOWS,
)
from futurecast.models.metrics import (
    GLOBAL_ASSET_SLUG,
    AssetSyncResult,
    MetricDefinition,
    MetricRecord,
    SyncResult,
    SyncStatus,
)
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.metrics_store import MetricsStore
from futurecast.services.santiment_client import SantimentAPIError, SantimentClient

logger = Logger()

SYNC_ERRORS = (SantimentAPIError, ClientError, BotoCoreError, ValueError, TypeError)


def _float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def to_record(metric: MetricDefinition, slug: str, datapoint: Dict[str, Any]) -> MetricRecord:
    """Turn one Santiment datapoint into a stored record."""
    if metric.ohlc:
        ohlc = datapoint.get("valueOhlc") or {}
        return MetricRecord(
            asset_slug=slug,
            metric_type=metric.type,
            metric_category=metric.category,
            datetime=datapoint["datetime"],
            value=_float(ohlc.get("close")),
            ohlc_open=_float(ohlc.get("open")),
            ohlc_high=_float(ohlc.get("high")),
            ohlc_low=_float(ohlc.get("low")),
            ohlc_close=_float(ohlc.get("close")),
        )
    if not metric.per_asset:
        return MetricRecord(
            asset_slug=slug,
            metric_type=metric.type,
            metric_category=metric.category,
            datetime=datapoint["datetime"],
            json_data=datapoint.get("topWords") or [],
        )
    return MetricRecord(
        asset_slug=slug,
        metric_type=metric.type,
        metric_category=metric.category,
        datetime=datapoint["datetime"],
        value=_float(datapoint.get("value")),
    )


class MetricsSyncService:
    def __init__(
        self,
        client: Optional[SantimentClient] = None,
        store: Optional[MetricsStore] = None,
        asset_subscription_service: Optional[AssetSubscriptionService] = None,
    ):
        self.client = client or SantimentClient()
        self.store = store or MetricsStore()
        self.asset_subscription_service = asset_subscription_service or AssetSubscriptionService(
            metrics_store=self.store
        )

    def fetch_datapoints(
        self, metric: MetricDefinition, slug: str, from_date: datetime, to_date: datetime
    ) -> List[Dict[str, Any]]:
        if not metric.per_asset:
            return self.client.get_trending_words(from_date, to_date, interval=metric.interval)
        if metric.ohlc:
            return self.client.get_ohlc(metric.santiment_metric, slug, from_date, to_date, interval=metric.interval)
        return self.client.get_timeseries(
            metric.santiment_metric,
            slug,
            from_date,
            to_date,
            interval=metric.interval,
            include_incomplete_data=metric.include_incomplete_data,
        )

    def _sync_latest(
        self, metric: MetricDefinition, slug: str, from_date: datetime, to_date: datetime, result: AssetSyncResult
    ) -> None:
        try:
            datapoints = self.fetch_datapoints(metric, slug, from_date, to_date)
            if not datapoints:
                result.skipped_metrics.append(metric.type)
                return
            self.store.upsert(to_record(metric, slug, datapoints[-1]))
            result.metrics_processed += 1
            result.datapoints_saved += 1
        except SYNC_ERRORS as e:
            logger.error(f"Error processing metric {metric.type} for {slug}: {e}")
            result.metrics_failed += 1
            result.errors.append(f"{metric.type}: {e}")

    def sync_metrics(self, group: str, now: Optional[datetime] = None) -> SyncResult:
        """
        Sync the latest datapoint of every metric in a group for all tracked assets.

        Args:
            group: One of "5m", "daily" or "trends"
            now: End of the queried window, defaults to the current UTC time

        Returns:
            SyncResult: Per-asset counts and errors
        """
        if group not in METRIC_GROUPS:
            raise ValueError(f"Unknown metric group {group}")

        now = now or datetime.now(timezone.utc)
        from_date = now - SYNC_WINDOWS[group]
        metrics = METRIC_GROUPS[group]
        result = SyncResult(group=group)

        slugs = self.asset_subscription_service.list_tracked_slugs()
        if not slugs:
            logger.info(f"No assets found to sync for group {group}")
            result.message = "No assets found to sync"
            return result

        global_metrics = [m for m in metrics if not m.per_asset]
        asset_metrics = [m for m in metrics if m.per_asset]

        if global_metrics:
            global_result = AssetSyncResult(slug=GLOBAL_ASSET_SLUG)
            for metric in global_metrics:
                self._sync_latest(metric, GLOBAL_ASSET_SLUG, from_date, now, global_result)
            result.add(global_result)

        for slug in slugs:
            asset_result = AssetSyncResult(slug=slug)
            try:
                self.store.set_sync_status(slug, SyncStatus.IN_PROGRESS)
                for metric in asset_metrics:
                    self._sync_latest(metric, slug, from_date, now, asset_result)
                self.store.set_sync_status(
                    slug, SyncStatus.COMPLETED, "; ".join(asset_result.errors) or None
                )
                result.add(asset_result)
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Error processing asset {slug}: {e}")
                result.errors.append(f"{slug}: {e}")

        result.message = "Metrics synced successfully"
        logger.info(
            f"Synced {group} metrics for {len(slugs)} assets: "
            f"{result.metrics_processed} processed, {result.metrics_failed} failed"
        )
        return result

    def sync_all_metrics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Run every sync group; the overall status is partial_success if any group had failures."""
        now = now or datetime.now(timezone.utc)
        groups: Dict[str, Any] = {}
        failed = False

        for group in METRIC_GROUPS:
            try:
                group_result = self.sync_metrics(group, now)
                groups[group] = group_result.model_dump()
                failed = failed or bool(group_result.errors) or group_result.metrics_failed > 0
            except (SantimentAPIError, ClientError, BotoCoreError) as e:
                logger.error(f"Sync of group {group} failed: {e}")
                groups[group] = {"group": group, "error": str(e)}
                failed = True

        status = SyncStatus.PARTIAL_SUCCESS if failed else SyncStatus.SUCCESS
        return {"status": status.value, "groups": groups}

    def sync_historical_metrics(
        self,
        slug: str,
        lookback_days: int = HISTORICAL_LOOKBACK_DAYS,
        now: Optional[datetime] = None,
    ) -> AssetSyncResult:
        """
        Backfill every daily metric of an asset over the lookback window.

        All datapoints are written, not only the latest one.
        """
        slug = slug.lower()
        now = now or datetime.now(timezone.utc)
        from_date = now - timedelta(days=lookback_days)
        result = AssetSyncResult(slug=slug)

        self.store.set_sync_status(slug, SyncStatus.HISTORICAL_IN_PROGRESS)
        logger.info(f"Starting historical sync for {slug} over {lookback_days} days")

        for metric in DAILY_METRICS:
            try:
                datapoints = self.fetch_datapoints(metric, slug, from_date, now)
                if not datapoints:
                    result.skipped_metrics.append(metric.type)
                    continue
                records = [to_record(metric, slug, datapoint) for datapoint in datapoints]
                result.datapoints_saved += self.store.upsert_many(records)
                result.metrics_processed += 1
            except SYNC_ERRORS as e:
                logger.error(f"Historical sync of {metric.type} for {slug} failed: {e}")
                result.metrics_failed += 1
                result.errors.append(f"{metric.type}: {e}")

        if result.metrics_failed and not result.metrics_processed:
            status = SyncStatus.HISTORICAL_FAILED
        else:
            status = SyncStatus.HISTORICAL_COMPLETED
        self.store.set_sync_status(slug, status, "; ".join(result.errors) or None)

        logger.info(
            f"Historical sync for {slug} finished with {status.value}: "
            f"{result.datapoints_saved} datapoints, {result.metrics_failed} metrics failed"
        )
        return result

    def metrics_exist(self, slug: str) -> bool:
        return self.store.metrics_exist(slug)

    def get_metrics(self, slug: str, since: Optional[datetime] = None) -> List[MetricRecord]:
        return self.store.get_metrics(slug, since=since)
