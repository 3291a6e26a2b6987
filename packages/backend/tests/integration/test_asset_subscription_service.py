from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest
from moto import mock_aws

from futurecast.models.asset import AssetLimitExceededError, CryptoAsset, ReportLimitExceededError
from futurecast.models.metrics import MetricCategory, MetricRecord
from futurecast.models.subscription import ProfileNotFoundError, SubscriptionTier
from futurecast.services.asset_limit_service import AssetLimitService
from futurecast.services.asset_subscription_service import AssetSubscriptionService
from futurecast.services.metrics_store import MetricsStore
from futurecast.services.profile_service import ProfileService
from tests.fixtures.ddb import (
    create_asset_metrics_table,
    create_asset_subscriptions_table,
    create_metric_sync_status_table,
    create_profiles_table,
    put_asset_subscription,
)

BITCOIN = CryptoAsset(slug="bitcoin", name="Bitcoin", symbol="BTC")
ETHEREUM = CryptoAsset(slug="ethereum", name="Ethereum", symbol="ETH")


def create_tables() -> None:
    create_profiles_table()
    create_asset_subscriptions_table()
    create_asset_metrics_table()
    create_metric_sync_status_table()


def build_service() -> AssetSubscriptionService:
    return AssetSubscriptionService(profile_service=ProfileService(), metrics_store=MetricsStore())


@mock_aws
def test_save_subscription_creates_then_updates():
    create_tables()
    service = build_service()
    service.profile_service.create_profile("user-1")

    created = service.save_subscription("user-1", BITCOIN, ["08:00"])
    assert created.created is True
    assert created.needs_historical_sync is True

    updated = service.save_subscription("user-1", BITCOIN, ["09:00"], "monday,friday")
    assert updated.created is False
    assert updated.subscription.subscription_id == created.subscription.subscription_id
    assert updated.subscription.created_at == created.subscription.created_at

    stored = service.get_subscription("user-1", "BITCOIN")
    assert stored.report_times == ["09:00"]
    assert stored.weekdays == ["monday", "friday"]


@mock_aws
def test_save_subscription_skips_backfill_when_metrics_exist():
    create_tables()
    service = build_service()
    service.profile_service.create_profile("user-1")
    service.metrics_store.upsert(
        MetricRecord(
            asset_slug="bitcoin",
            metric_type="rsi_1d",
            metric_category=MetricCategory.FINANCIAL,
            datetime="2024-01-01T00:00:00Z",
            value=55.0,
        )
    )

    assert service.save_subscription("user-1", BITCOIN, []).needs_historical_sync is False


@mock_aws
def test_save_subscription_enforces_asset_limit_on_new_assets_only():
    create_tables()
    service = build_service()
    service.profile_service.create_profile("user-1")
    service.save_subscription("user-1", BITCOIN, ["08:00"])

    with pytest.raises(AssetLimitExceededError):
        service.save_subscription("user-1", ETHEREUM, ["08:00"])

    # Rescheduling an asset already tracked is always allowed
    service.save_subscription("user-1", BITCOIN, ["10:00"])

    service.profile_service.update_profile("user-1", additional_assets=1)
    assert service.save_subscription("user-1", ETHEREUM, []).created is True


@mock_aws
def test_save_subscription_removes_new_asset_written_past_allowance():
    create_tables()
    service = build_service()
    service.profile_service.create_profile("user-1")
    list_subscriptions = service.list_subscriptions
    put_asset_subscription("user-1", "ethereum", datetime(2024, 1, 1, tzinfo=timezone.utc))
    calls = []

    def stale_first_count(user_id):
        calls.append(user_id)
        # the count check ran before a concurrent save stored ethereum
        return [] if len(calls) == 1 else list_subscriptions(user_id)

    with mock.patch.object(service, "list_subscriptions", side_effect=stale_first_count):
        with pytest.raises(AssetLimitExceededError):
            service.save_subscription("user-1", BITCOIN, ["08:00"])

    assert [s.asset_slug for s in service.list_subscriptions("user-1")] == ["ethereum"]
    assert service.get_subscription("user-1", "bitcoin") is None


@mock_aws
def test_save_subscription_enforces_report_limit():
    create_tables()
    service = build_service()
    service.profile_service.create_profile("user-1")

    with pytest.raises(ReportLimitExceededError):
        service.save_subscription("user-1", BITCOIN, ["08:00", "20:00"])

    service.profile_service.update_profile("user-1", subscription_tier=SubscriptionTier.PRO)
    result = service.save_subscription("user-1", BITCOIN, ["20:00", "08:00"])
    assert result.subscription.report_times == ["08:00", "20:00"]


@mock_aws
def test_save_subscription_requires_profile():
    create_tables()
    with pytest.raises(ProfileNotFoundError):
        build_service().save_subscription("nobody", BITCOIN, [])


@mock_aws
def test_update_report_times():
    create_tables()
    service = build_service()
    service.profile_service.create_profile("user-1")
    service.save_subscription("user-1", BITCOIN, ["08:00"])

    assert service.update_report_times("user-1", "bitcoin", ["18:30"], "sunday") is True
    stored = service.get_subscription("user-1", "bitcoin")
    assert stored.report_times == ["18:30"]
    assert stored.report_days == "sunday"

    assert service.update_report_times("user-1", "ethereum", ["08:00"]) is False
    with pytest.raises(ReportLimitExceededError):
        service.update_report_times("user-1", "bitcoin", ["08:00", "09:00"])


@mock_aws
def test_remove_subscription_and_tracked_slugs():
    create_tables()
    service = build_service()
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    put_asset_subscription("user-1", "bitcoin", now)
    put_asset_subscription("user-2", "bitcoin", now)
    put_asset_subscription("user-2", "solana", now)

    assert service.list_tracked_slugs() == ["bitcoin", "solana"]
    assert service.remove_subscription("user-2", "solana") is True
    assert service.remove_subscription("user-2", "solana") is False
    assert service.list_tracked_slugs() == ["bitcoin"]


@mock_aws
def test_mark_report_sent():
    create_tables()
    service = build_service()
    now = datetime(2024, 1, 1, 8, 5, tzinfo=timezone.utc)
    put_asset_subscription("user-1", "bitcoin", now - timedelta(days=3), ["08:00"])

    service.mark_report_sent("user-1", "bitcoin", now)

    assert service.get_subscription("user-1", "bitcoin").last_report_sent == now


@mock_aws
def test_enforce_asset_limits_keeps_oldest_assets():
    create_tables()
    profile_service = ProfileService()
    asset_service = AssetSubscriptionService(profile_service=profile_service, metrics_store=MetricsStore())
    limit_service = AssetLimitService(profile_service, asset_service)
    profile_service.create_profile("user-1")
    profile_service.update_profile("user-1", subscription_tier=SubscriptionTier.BASIC, is_trial_user=False)

    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for offset, slug in enumerate(["bitcoin", "ethereum", "solana"]):
        put_asset_subscription("user-1", slug, start + timedelta(days=offset))

    assert limit_service.check_asset_limits("user-1").is_within_limit is True

    profile_service.update_profile("user-1", subscription_tier=SubscriptionTier.TRIAL, additional_assets=1)
    check = limit_service.check_asset_limits("user-1")
    assert check.is_within_limit is False
    assert check.max_allowed == 2
    assert check.excess_count == 1
    assert check.kept_assets == ["bitcoin", "ethereum"]

    result = limit_service.enforce_asset_limits("user-1")
    assert result.is_within_limit is True
    assert result.removed_assets == ["solana"]
    assert [s.asset_slug for s in asset_service.list_subscriptions("user-1")] == ["bitcoin", "ethereum"]
