import json
import os

from moto import mock_aws

from futurecast.models.subscription import SubscriptionTier
from futurecast.services.profile_service import ProfileService
from stripe_webhook.app import handler
from tests.fixtures.ddb import create_all_tables
from tests.fixtures.events import api_gateway_event, response_body, stripe_signature


def webhook_event(payload: str, signature: str) -> dict:
    return api_gateway_event(
        "POST",
        "/stripe/webhook",
        raw_body=payload,
        user_id=None,
        email=None,
        headers={"Stripe-Signature": signature},
    )


@mock_aws
def test_signed_event_updates_profile(lambda_context):
    create_all_tables()
    profiles = ProfileService()
    profiles.create_profile("user-1")
    profiles.update_profile("user-1", stripe_customer_id="cus_123")
    payload = json.dumps({
        "id": "evt_1",
        "type": "customer.subscription.updated",
        "data": {
            "object": {
                "id": "sub_1",
                "customer": "cus_123",
                "items": {"data": [{"id": "si_1", "price": {"id": "price_elite"}}]},
            }
        },
    })

    response = handler(
        webhook_event(payload, stripe_signature(payload, os.environ["STRIPE_WEBHOOK_SIGNING_SECRET"])),
        lambda_context,
    )

    assert response["statusCode"] == 200
    assert response_body(response) == {"received": True}
    assert profiles.get_profile("user-1").subscription_tier == SubscriptionTier.ELITE


@mock_aws
def test_bad_signature_is_rejected(lambda_context):
    create_all_tables()
    payload = json.dumps({"id": "evt_1", "type": "customer.subscription.deleted", "data": {"object": {}}})

    response = handler(webhook_event(payload, stripe_signature(payload, "whsec_forged")), lambda_context)

    assert response["statusCode"] == 400


@mock_aws
def test_missing_signature_is_rejected(lambda_context):
    create_all_tables()
    event = api_gateway_event("POST", "/stripe/webhook", raw_body="{}", user_id=None, email=None)

    assert handler(event, lambda_context)["statusCode"] == 400


@mock_aws
def test_failed_request_credit_returns_server_error(lambda_context):
    create_all_tables()
    payload = json.dumps({
        "id": "evt_2",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_req",
                "amount_total": 499,
                "metadata": {"type": "request_purchase", "user_id": "ghost", "requests": "50"},
            }
        },
    })

    response = handler(
        webhook_event(payload, stripe_signature(payload, os.environ["STRIPE_WEBHOOK_SIGNING_SECRET"])),
        lambda_context,
    )

    assert response["statusCode"] == 500
