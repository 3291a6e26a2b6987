import os

# moto has to be imported before any boto3 client is created
import moto  # noqa: F401
import pytest

os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SECURITY_TOKEN", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["AWS_REGION"] = "us-east-1"

os.environ["POWERTOOLS_TRACE_DISABLED"] = "true"
os.environ["POWERTOOLS_SERVICE_NAME"] = "futurecast-tests"

os.environ["PROFILES_TABLE_NAME"] = "test-profiles-table"
os.environ["ASSET_SUBSCRIPTIONS_TABLE_NAME"] = "test-asset-subscriptions-table"
os.environ["ASSET_METRICS_TABLE_NAME"] = "test-asset-metrics-table"
os.environ["METRIC_SYNC_STATUS_TABLE_NAME"] = "test-metric-sync-status-table"
os.environ["REQUEST_PURCHASES_TABLE_NAME"] = "test-request-purchases-table"

os.environ["STRIPE_SECRET_KEY"] = "sk_test_futurecast"
os.environ["STRIPE_WEBHOOK_SIGNING_SECRET"] = "whsec_futurecast_test"
os.environ["STRIPE_TRIAL_PRICE_ID"] = "price_trial"
os.environ["STRIPE_BASIC_PRICE_ID"] = "price_basic"
os.environ["STRIPE_PRO_PRICE_ID"] = "price_pro"
os.environ["STRIPE_ELITE_PRICE_ID"] = "price_elite"
os.environ["STRIPE_REQUESTS_50_PRICE_ID"] = "price_requests_50"
os.environ["STRIPE_REQUESTS_100_PRICE_ID"] = "price_requests_100"
os.environ["STRIPE_REQUESTS_250_PRICE_ID"] = "price_requests_250"
os.environ["SANTIMENT_API_KEY"] = "santiment-test-key"
os.environ["FRONTEND_URL"] = "https://app.futurecast.test"
os.environ["REPORT_SENDER_EMAIL"] = "reports@futurecast.test"

from tests.fixtures.events import FakeLambdaContext  # noqa: E402


@pytest.fixture
def lambda_context() -> FakeLambdaContext:
    return FakeLambdaContext()
