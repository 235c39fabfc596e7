from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import requests

from jobcredits.core.errors import GatewayError, GatewayNotConfigured, WebhookSignatureError
from jobcredits.core.settings import settings


logger = logging.getLogger(__name__)


@dataclass
class GatewaySession:
    id: str
    url: str | None = None
    status: str | None = None
    payment_status: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status in {"paid", "no_payment_required"}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "GatewaySession":
        return cls(
            id=str(data.get("id") or ""),
            url=data.get("url"),
            status=data.get("status"),
            payment_status=data.get("payment_status"),
            metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
        )


def _flatten_form(value: Any, prefix: str = "") -> list[tuple[str, str]]:
    """Encode nested params the way Stripe expects: ``line_items[0][price]=...``."""
    pairs: list[tuple[str, str]] = []
    if isinstance(value, dict):
        for k, v in value.items():
            pairs.extend(_flatten_form(v, f"{prefix}[{k}]" if prefix else str(k)))
    elif isinstance(value, (list, tuple)):
        for i, v in enumerate(value):
            pairs.extend(_flatten_form(v, f"{prefix}[{i}]"))
    elif value is None:
        return pairs
    elif isinstance(value, bool):
        pairs.append((prefix, "true" if value else "false"))
    else:
        pairs.append((prefix, str(value)))
    return pairs


class StripeGateway:
    def __init__(self, api_key: str, api_base: str = "https://api.stripe.com/v1", timeout_s: float = 30) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _check(self, resp: requests.Response) -> dict[str, Any]:
        if resp.status_code >= 400:
            message = ""
            try:
                message = str(((resp.json() or {}).get("error") or {}).get("message") or "")
            except ValueError:
                message = ""
            logger.error("stripe.request.failed status=%s message=%s", resp.status_code, message)
            raise GatewayError(f"Stripe error ({resp.status_code})")
        try:
            return resp.json() or {}
        except ValueError:
            raise GatewayError("Stripe returned invalid JSON")

    def create_checkout_session(
        self,
        *,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> GatewaySession:
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "client_reference_id": metadata.get("userId"),
            "allow_promotion_codes": True,
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            resp = requests.post(
                f"{self.api_base}/checkout/sessions",
                headers=self._headers(idempotency_key),
                data=_flatten_form(params),
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            logger.exception("stripe.checkout.create.connection_error")
            raise GatewayError("Stripe connection error") from exc
        session = GatewaySession.from_payload(self._check(resp))
        if not session.id or not session.url:
            raise GatewayError("Failed to create checkout")
        return session

    def retrieve_checkout_session(self, session_id: str) -> GatewaySession:
        try:
            resp = requests.get(
                f"{self.api_base}/checkout/sessions/{session_id}",
                headers=self._headers(),
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            logger.exception("stripe.checkout.retrieve.connection_error session_id=%s", session_id)
            raise GatewayError("Stripe connection error") from exc
        return GatewaySession.from_payload(self._check(resp))


def verify_webhook_signature(
    raw_body: bytes,
    signature: str | None,
    secret: str | None,
    tolerance_s: int = 300,
    now: float | None = None,
) -> dict[str, Any]:
    """Check a ``Stripe-Signature`` header and return the decoded event."""
    if not secret:
        raise GatewayNotConfigured("STRIPE_WEBHOOK_SECRET is not configured")
    header = (signature or "").strip()
    if not header:
        raise WebhookSignatureError("Missing Stripe-Signature")

    timestamp: str | None = None
    candidates: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            candidates.append(value)
    if not timestamp or not candidates:
        raise WebhookSignatureError("Malformed Stripe-Signature")

    signed_payload = timestamp.encode("utf-8") + b"." + raw_body
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, c) for c in candidates):
        raise WebhookSignatureError("Invalid signature")

    try:
        ts = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("Malformed Stripe-Signature")
    current = time.time() if now is None else now
    if tolerance_s and abs(current - ts) > tolerance_s:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    try:
        event = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise WebhookSignatureError("Invalid JSON")
    if not isinstance(event, dict):
        raise WebhookSignatureError("Invalid JSON")
    return event


def sign_webhook_payload(raw_body: bytes, secret: str, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else int(timestamp)
    digest = hmac.new(secret.encode("utf-8"), str(ts).encode("utf-8") + b"." + raw_body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def get_payment_gateway() -> StripeGateway:
    if not settings.stripe_secret_key:
        raise GatewayNotConfigured("STRIPE_SECRET_KEY is not configured")
    return StripeGateway(api_key=settings.stripe_secret_key, api_base=settings.stripe_api_base)
