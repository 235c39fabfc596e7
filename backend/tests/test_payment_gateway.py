import json
import unittest
from unittest import mock

import requests

from jobcredits.core.errors import GatewayError, GatewayNotConfigured, WebhookSignatureError
from jobcredits.services.payment_gateway import (
    StripeGateway,
    _flatten_form,
    sign_webhook_payload,
    verify_webhook_signature,
)


SECRET = "whsec_test"
BODY = json.dumps({"id": "evt_1", "type": "checkout.session.completed"}).encode("utf-8")


class TestWebhookSignature(unittest.TestCase):
    def test_valid_signature(self):
        header = sign_webhook_payload(BODY, SECRET, timestamp=1_700_000_000)
        event = verify_webhook_signature(BODY, header, SECRET, now=1_700_000_010)
        self.assertEqual(event["id"], "evt_1")

    def test_tampered_body(self):
        header = sign_webhook_payload(BODY, SECRET, timestamp=1_700_000_000)
        with self.assertRaises(WebhookSignatureError):
            verify_webhook_signature(BODY + b" ", header, SECRET, now=1_700_000_000)

    def test_wrong_secret(self):
        header = sign_webhook_payload(BODY, "whsec_other", timestamp=1_700_000_000)
        with self.assertRaises(WebhookSignatureError):
            verify_webhook_signature(BODY, header, SECRET, now=1_700_000_000)

    def test_stale_timestamp(self):
        header = sign_webhook_payload(BODY, SECRET, timestamp=1_700_000_000)
        with self.assertRaises(WebhookSignatureError):
            verify_webhook_signature(BODY, header, SECRET, tolerance_s=300, now=1_700_000_301)

    def test_missing_or_malformed_header(self):
        with self.assertRaises(WebhookSignatureError):
            verify_webhook_signature(BODY, None, SECRET)
        with self.assertRaises(WebhookSignatureError):
            verify_webhook_signature(BODY, "v1=abc", SECRET)

    def test_missing_secret(self):
        with self.assertRaises(GatewayNotConfigured):
            verify_webhook_signature(BODY, "t=1,v1=abc", None)


class TestStripeGateway(unittest.TestCase):
    def test_flatten_form_nests_like_stripe(self):
        pairs = _flatten_form(
            {
                "mode": "payment",
                "line_items": [{"price": "price_1", "quantity": 1}],
                "metadata": {"userId": "u1"},
                "allow_promotion_codes": True,
                "customer_email": None,
            }
        )
        self.assertIn(("line_items[0][price]", "price_1"), pairs)
        self.assertIn(("line_items[0][quantity]", "1"), pairs)
        self.assertIn(("metadata[userId]", "u1"), pairs)
        self.assertIn(("allow_promotion_codes", "true"), pairs)
        self.assertNotIn("customer_email", [k for k, _ in pairs])

    def test_create_checkout_session_sends_idempotency_key(self):
        resp = mock.Mock(status_code=200)
        resp.json.return_value = {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1", "metadata": {"userId": "u1"}}
        gateway = StripeGateway(api_key="sk_test", api_base="https://stripe.test/v1")

        with mock.patch("jobcredits.services.payment_gateway.requests.post", return_value=resp) as post:
            session = gateway.create_checkout_session(
                line_items=[{"price": "price_1", "quantity": 1}],
                success_url="https://app/ok",
                cancel_url="https://app/cancel",
                metadata={"userId": "u1"},
                idempotency_key="idem-1",
            )

        self.assertEqual(session.id, "cs_1")
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://stripe.test/v1/checkout/sessions")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk_test")
        self.assertEqual(kwargs["headers"]["Idempotency-Key"], "idem-1")
        self.assertIn(("client_reference_id", "u1"), kwargs["data"])

    def test_http_error_becomes_gateway_error(self):
        resp = mock.Mock(status_code=400)
        resp.json.return_value = {"error": {"message": "No such price"}}
        gateway = StripeGateway(api_key="sk_test")
        with mock.patch("jobcredits.services.payment_gateway.requests.post", return_value=resp):
            with self.assertRaises(GatewayError):
                gateway.create_checkout_session(line_items=[], success_url="a", cancel_url="b", metadata={})

    def test_connection_error_becomes_gateway_error(self):
        gateway = StripeGateway(api_key="sk_test")
        with mock.patch(
            "jobcredits.services.payment_gateway.requests.get",
            side_effect=requests.ConnectionError("down"),
        ):
            with self.assertRaises(GatewayError):
                gateway.retrieve_checkout_session("cs_1")

    def test_retrieve_reports_paid(self):
        resp = mock.Mock(status_code=200)
        resp.json.return_value = {"id": "cs_2", "payment_status": "paid", "metadata": {"userId": "u1"}}
        gateway = StripeGateway(api_key="sk_test")
        with mock.patch("jobcredits.services.payment_gateway.requests.get", return_value=resp):
            session = gateway.retrieve_checkout_session("cs_2")
        self.assertTrue(session.is_paid)
        self.assertEqual(session.metadata["userId"], "u1")


if __name__ == "__main__":
    unittest.main()
