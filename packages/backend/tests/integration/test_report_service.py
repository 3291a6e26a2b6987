from datetime import datetime, timedelta, timezone

import boto3
import pytest
from moto import mock_aws

from futurecast.models.metrics import MetricCategory, MetricRecord
from futurecast.models.subscription import ProfileNotFoundError, SubscriptionError
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.metrics_store import MetricsStore, format_timestamp
from futurecast.services.profile_service import ProfileService
from futurecast.services.report_service import ReportService
from tests.fixtures.ddb import (
    create_asset_metrics_table,
    create_asset_subscriptions_table,
    create_metric_sync_status_table,
    create_profiles_table,
    put_asset_subscription,
)

NOW = datetime(2024, 1, 1, 8, 5, tzinfo=timezone.utc)  # a Monday
SENDER = "reports@futurecast.test"


def setup_environment() -> ReportService:
    create_profiles_table()
    create_asset_subscriptions_table()
    create_asset_metrics_table()
    create_metric_sync_status_table()
    boto3.client("ses", region_name="us-east-1").verify_email_identity(EmailAddress=SENDER)

    profile_service = ProfileService()
    store = MetricsStore()
    return ReportService(
        asset_subscription_service=AssetSubscriptionService(profile_service=profile_service, metrics_store=store),
        profile_service=profile_service,
        store=store,
        sender_email=SENDER,
        window_minutes=15,
    )


def store_metric(store: MetricsStore, metric_type: str, at: datetime, value: float) -> None:
    store.upsert(
        MetricRecord(
            asset_slug="bitcoin",
            metric_type=metric_type,
            metric_category=MetricCategory.FINANCIAL,
            datetime=format_timestamp(at),
            value=value,
        )
    )


def sent_count() -> int:
    return int(boto3.client("ses", region_name="us-east-1").get_send_quota()["SentLast24Hours"])


@mock_aws
def test_build_report_scores_metrics():
    service = setup_environment()
    store_metric(service.store, "price_usd_5m", NOW - timedelta(hours=24), 100.0)
    store_metric(service.store, "price_usd_5m", NOW, 110.0)
    store_metric(service.store, "rsi_1d", NOW - timedelta(hours=24), 50.0)
    store_metric(service.store, "rsi_1d", NOW, 50.5)
    store_metric(service.store, "rsi_1d", NOW - timedelta(days=40), 10.0)
    put_asset_subscription("user-1", "bitcoin", NOW - timedelta(days=1), ["08:00"])

    subscription = service.asset_subscription_service.get_subscription("user-1", "bitcoin")
    report = service.build_report(subscription, NOW)

    assert report["metrics"]["price_usd_5m"]["current_value"] == 110.0
    assert report["score"]["individual_scores"] == {"price_usd_5m": 1, "rsi_1d": 0}
    assert report["score"]["normalized_score"] == 50
    assert report["generated_at"] == "2024-01-01 08:05"


@mock_aws
def test_send_due_reports_emails_each_due_subscription_once():
    service = setup_environment()
    service.profile_service.create_profile("user-1", email="trader@example.com")
    service.profile_service.create_profile("user-2", email="hodler@example.com")
    put_asset_subscription("user-1", "bitcoin", NOW - timedelta(days=1), ["08:00"])
    put_asset_subscription("user-2", "bitcoin", NOW - timedelta(days=1), ["20:00"])
    store_metric(service.store, "price_usd_5m", NOW, 42000.0)

    result = service.send_due_reports(NOW)

    assert result["sent"] == 1
    assert result["errors"] == []
    assert result["details"][0]["subscription"] == "user-1/bitcoin"
    assert sent_count() == 1
    subscription = service.asset_subscription_service.get_subscription("user-1", "bitcoin")
    assert subscription.last_report_sent == NOW

    assert service.send_due_reports(NOW + timedelta(minutes=5))["sent"] == 0
    assert sent_count() == 1


@mock_aws
def test_send_due_reports_records_missing_email():
    service = setup_environment()
    service.profile_service.create_profile("user-1")
    put_asset_subscription("user-1", "bitcoin", NOW - timedelta(days=1), ["08:00"])

    result = service.send_due_reports(NOW)

    assert result["sent"] == 0
    assert result["errors"][0]["subscription"] == "user-1/bitcoin"
    assert service.asset_subscription_service.get_subscription("user-1", "bitcoin").last_report_sent is None


@mock_aws
def test_welcome_report_is_sent_once_per_user():
    service = setup_environment()
    service.profile_service.create_profile("user-1", email="trader@example.com", first_name="Ada")
    put_asset_subscription("user-1", "bitcoin", NOW, ["20:00"])
    put_asset_subscription("user-1", "ethereum", NOW, ["20:00"])
    store_metric(service.store, "price_usd_5m", NOW, 42000.0)

    assert service.send_welcome_report("user-1", "bitcoin", NOW) is True
    assert sent_count() == 1
    assert service.profile_service.get_profile("user-1").welcome_report_sent is True
    assert service.asset_subscription_service.get_subscription("user-1", "bitcoin").last_report_sent == NOW

    assert service.send_welcome_report("user-1", "ethereum", NOW) is False
    assert sent_count() == 1


@mock_aws
def test_welcome_report_requires_email_and_tracked_asset():
    service = setup_environment()
    service.profile_service.create_profile("user-1")
    service.profile_service.create_profile("user-2", email="hodler@example.com")
    put_asset_subscription("user-1", "bitcoin", NOW, ["20:00"])

    with pytest.raises(SubscriptionError):
        service.send_welcome_report("user-1", "bitcoin", NOW)
    with pytest.raises(SubscriptionError):
        service.send_welcome_report("user-2", "bitcoin", NOW)
    with pytest.raises(ProfileNotFoundError):
        service.send_welcome_report("stranger", "bitcoin", NOW)

    assert sent_count() == 0
    assert service.profile_service.get_profile("user-2").welcome_report_sent is False
