from datetime import datetime, timedelta, timezone
from unittest import mock

from botocore.exceptions import ClientError
from moto import mock_aws

import asset_subscriptions.app as asset_subscriptions_app
from asset_subscriptions.app import handler
from asset_subscriptions.services import send_welcome_report, trigger_historical_sync
from futurecast.models.subscription import SubscriptionError, SubscriptionTier
from futurecast.services.profile_service import ProfileService
from tests.fixtures.ddb import (
    create_asset_metrics_table,
    create_asset_subscriptions_table,
    create_metric_sync_status_table,
    create_profiles_table,
    put_asset_subscription,
)
from tests.fixtures.events import api_gateway_event, response_body

BITCOIN = {"slug": "bitcoin", "name": "Bitcoin", "symbol": "BTC"}


def create_tables() -> None:
    create_profiles_table()
    create_asset_subscriptions_table()
    create_asset_metrics_table()
    create_metric_sync_status_table()


@mock_aws
def test_add_asset_triggers_historical_sync(lambda_context):
    create_tables()
    ProfileService().create_profile("test-user", email="trader@example.com")

    with mock.patch.object(asset_subscriptions_app, "trigger_historical_sync", return_value=True) as trigger, \
            mock.patch.object(asset_subscriptions_app, "send_welcome_report", return_value=True) as welcome:
        response = handler(
            api_gateway_event("POST", "/assets", {"asset": BITCOIN, "report_times": ["08:00"]}), lambda_context
        )

    assert response["statusCode"] == 200
    body = response_body(response)
    assert body["created"] is True
    assert body["historical_sync_triggered"] is True
    assert body["welcome_report_sent"] is True
    assert body["subscription"]["asset_slug"] == "bitcoin"
    trigger.assert_called_once_with("bitcoin", asset_subscriptions_app.HISTORICAL_SYNC_FUNCTION_NAME)
    assert welcome.call_args.args[1:] == ("test-user", "bitcoin")

    listed = response_body(handler(api_gateway_event("GET", "/assets"), lambda_context))
    assert [a["asset_slug"] for a in listed["assets"]] == ["bitcoin"]


@mock_aws
def test_add_asset_over_limit_is_forbidden(lambda_context):
    create_tables()
    ProfileService().create_profile("test-user")
    put_asset_subscription("test-user", "ethereum", datetime(2024, 1, 1, tzinfo=timezone.utc))

    with mock.patch.object(asset_subscriptions_app, "trigger_historical_sync") as trigger:
        response = handler(api_gateway_event("POST", "/assets", {"asset": BITCOIN}), lambda_context)

    assert response["statusCode"] == 403
    assert "Asset limit reached" in response_body(response)["message"]
    trigger.assert_not_called()


@mock_aws
def test_add_asset_validation_and_auth(lambda_context):
    create_tables()
    ProfileService().create_profile("test-user")

    invalid = handler(
        api_gateway_event("POST", "/assets", {"asset": BITCOIN, "report_times": ["25:00"]}), lambda_context
    )
    assert invalid["statusCode"] == 400

    anonymous = handler(api_gateway_event("GET", "/assets", user_id=None, email=None), lambda_context)
    assert anonymous["statusCode"] == 401

    no_profile = handler(
        api_gateway_event("POST", "/assets", {"asset": BITCOIN}, user_id="stranger"), lambda_context
    )
    assert no_profile["statusCode"] == 404


@mock_aws
def test_update_schedule_and_remove(lambda_context):
    create_tables()
    ProfileService().create_profile("test-user")
    put_asset_subscription("test-user", "bitcoin", datetime(2024, 1, 1, tzinfo=timezone.utc), ["08:00"])

    updated = handler(
        api_gateway_event("PUT", "/assets/bitcoin/schedule", {"report_times": ["21:15"], "report_days": "friday"}),
        lambda_context,
    )
    assert updated["statusCode"] == 200
    assert response_body(updated)["report_times"] == ["21:15"]

    too_many = handler(
        api_gateway_event("PUT", "/assets/bitcoin/schedule", {"report_times": ["08:00", "09:00"]}), lambda_context
    )
    assert too_many["statusCode"] == 403

    untracked = handler(
        api_gateway_event("PUT", "/assets/solana/schedule", {"report_times": ["08:00"]}), lambda_context
    )
    assert untracked["statusCode"] == 404

    assert handler(api_gateway_event("DELETE", "/assets/bitcoin"), lambda_context)["statusCode"] == 200
    assert handler(api_gateway_event("DELETE", "/assets/bitcoin"), lambda_context)["statusCode"] == 404


@mock_aws
def test_limits_endpoints(lambda_context):
    create_tables()
    profiles = ProfileService()
    profiles.create_profile("test-user")
    profiles.update_profile("test-user", subscription_tier=SubscriptionTier.BASIC)
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for offset, slug in enumerate(["bitcoin", "ethereum", "solana"]):
        put_asset_subscription("test-user", slug, start + timedelta(days=offset))
    profiles.update_profile("test-user", subscription_tier=SubscriptionTier.TRIAL)

    check = response_body(handler(api_gateway_event("GET", "/assets/limits"), lambda_context))
    assert check["is_within_limit"] is False
    assert check["excess_count"] == 2

    enforced = response_body(handler(api_gateway_event("POST", "/assets/limits/enforce", {}), lambda_context))
    assert enforced["is_within_limit"] is True
    assert enforced["removed_assets"] == ["ethereum", "solana"]


@mock_aws
def test_updating_a_tracked_asset_sends_no_welcome_report(lambda_context):
    create_tables()
    ProfileService().create_profile("test-user", email="trader@example.com")
    put_asset_subscription("test-user", "bitcoin", datetime(2024, 1, 1, tzinfo=timezone.utc), ["08:00"])

    with mock.patch.object(asset_subscriptions_app, "trigger_historical_sync") as trigger, \
            mock.patch.object(asset_subscriptions_app, "send_welcome_report") as welcome:
        response = handler(
            api_gateway_event("POST", "/assets", {"asset": BITCOIN, "report_times": ["20:00"]}), lambda_context
        )

    assert response["statusCode"] == 200
    body = response_body(response)
    assert body["created"] is False
    assert body["welcome_report_sent"] is False
    welcome.assert_not_called()


def test_trigger_historical_sync_invokes_lambda_asynchronously():
    lambda_client = mock.Mock()
    with mock.patch("asset_subscriptions.services.get_lambda_client", return_value=lambda_client):
        assert trigger_historical_sync("bitcoin", "fc-sync-historical-metrics") is True

    kwargs = lambda_client.invoke.call_args.kwargs
    assert kwargs["FunctionName"] == "fc-sync-historical-metrics"
    assert kwargs["InvocationType"] == "Event"
    assert kwargs["Payload"] == b'{"asset_slug": "bitcoin"}'


def test_trigger_historical_sync_failures_are_not_fatal():
    assert trigger_historical_sync("bitcoin", None) is False

    lambda_client = mock.Mock()
    lambda_client.invoke.side_effect = ClientError(
        {"Error": {"Code": "ResourceNotFoundException", "Message": "Function not found"}}, "Invoke"
    )
    with mock.patch("asset_subscriptions.services.get_lambda_client", return_value=lambda_client):
        assert trigger_historical_sync("bitcoin", "missing-function") is False


def test_send_welcome_report_failures_are_not_fatal():
    report_service = mock.Mock()
    report_service.send_welcome_report.return_value = True
    assert send_welcome_report(report_service, "test-user", "bitcoin") is True
    report_service.send_welcome_report.assert_called_once_with("test-user", "bitcoin")

    report_service.send_welcome_report.side_effect = ClientError(
        {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified"}}, "SendEmail"
    )
    assert send_welcome_report(report_service, "test-user", "bitcoin") is False

    report_service.send_welcome_report.side_effect = SubscriptionError("No e-mail address for user test-user")
    assert send_welcome_report(report_service, "test-user", "bitcoin") is False
