from datetime import datetime, timedelta, timezone
from unittest import mock

import boto3
import pytest
from moto import mock_aws

from futurecast.constants.metrics import DAILY_METRICS
from futurecast.models.metrics import SyncStatus
from futurecast.services.metrics_store import MetricsStore
from futurecast.services.profile_service import ProfileService
from futurecast.services.santiment_client import SantimentClient
from send_scheduled_reports.app import handler as send_scheduled_reports_handler
from sync_historical_metrics.app import InvalidPayload, handler as sync_historical_metrics_handler
from sync_metrics.app import InvalidSyncGroup, handler as sync_metrics_handler
from tests.fixtures.ddb import create_all_tables, put_asset_subscription

DATAPOINTS = [{"datetime": "2024-01-02T00:00:00Z", "value": 7.0}]
OHLC = [{"datetime": "2024-01-02T00:00:00Z", "valueOhlc": {"open": 1, "high": 2, "low": 0.5, "close": 1.5}}]
WORDS = [{"datetime": "2024-01-02T00:00:00Z", "topWords": [{"word": "halving", "score": 3.0}]}]


def patch_santiment():
    return (
        mock.patch.object(SantimentClient, "get_timeseries", return_value=DATAPOINTS),
        mock.patch.object(SantimentClient, "get_ohlc", return_value=OHLC),
        mock.patch.object(SantimentClient, "get_trending_words", return_value=WORDS),
    )


@mock_aws
def test_sync_metrics_single_group(lambda_context):
    create_all_tables()
    put_asset_subscription("user-1", "bitcoin", datetime(2024, 1, 1, tzinfo=timezone.utc))

    timeseries, ohlc, words = patch_santiment()
    with timeseries, ohlc, words:
        result = sync_metrics_handler({"group": "daily"}, lambda_context)

    assert result["success"] is True
    assert result["message"] == "Metrics synced successfully"
    assert result["results"]["metrics_processed"] == len(DAILY_METRICS)


@mock_aws
def test_sync_metrics_all_groups_by_default(lambda_context):
    create_all_tables()
    put_asset_subscription("user-1", "bitcoin", datetime(2024, 1, 1, tzinfo=timezone.utc))

    timeseries, ohlc, words = patch_santiment()
    with timeseries, ohlc, words:
        result = sync_metrics_handler({}, lambda_context)

    assert result["status"] == SyncStatus.SUCCESS.value
    assert set(result["groups"]) == {"5m", "daily", "trends"}
    assert MetricsStore().get_metrics("global", metric_type="trending_words")[0].json_data[0]["word"] == "halving"


def test_sync_metrics_rejects_unknown_group(lambda_context):
    with pytest.raises(InvalidSyncGroup):
        sync_metrics_handler({"group": "weekly"}, lambda_context)


@mock_aws
def test_sync_historical_metrics(lambda_context):
    create_all_tables()

    timeseries, ohlc, words = patch_santiment()
    with timeseries, ohlc, words:
        result = sync_historical_metrics_handler({"asset_slug": "solana", "lookback_days": 90}, lambda_context)

    assert result["success"] is True
    assert result["results"]["datapoints_saved"] == len(DAILY_METRICS)
    assert MetricsStore().get_sync_status("solana")["status"] == SyncStatus.HISTORICAL_COMPLETED.value


def test_sync_historical_metrics_requires_slug(lambda_context):
    with pytest.raises(InvalidPayload):
        sync_historical_metrics_handler({}, lambda_context)


@mock_aws
def test_send_scheduled_reports(lambda_context):
    create_all_tables()
    boto3.client("ses", region_name="us-east-1").verify_email_identity(EmailAddress="reports@futurecast.test")
    ProfileService().create_profile("user-1", email="trader@example.com")
    now = datetime.now(timezone.utc)
    report_time = now.strftime("%H:%M")
    put_asset_subscription("user-1", "bitcoin", now - timedelta(days=1), [report_time])

    result = send_scheduled_reports_handler({}, lambda_context)

    assert result["success"] is True
    assert result["sent"] == 1
