from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from jobcredits.core.database import get_db
from jobcredits.core.errors import OwnershipMismatch, UnknownPurchase
from jobcredits.core.security import CurrentUser, require_employer
from jobcredits.core.settings import settings
from jobcredits.schemas.billing import (
    AddOnCheckoutRequest,
    CheckoutResponse,
    CheckoutSessionRequest,
    ConfirmSessionRequest,
    FulfillmentResponse,
    UpsellCheckoutRequest,
)
from jobcredits.services import catalog
from jobcredits.services.fulfillment import fulfill_checkout_session, mark_checkout_failed, sync_subscription
from jobcredits.services.payment_gateway import StripeGateway, get_payment_gateway, verify_webhook_signature
from jobcredits.services.purchases import start_add_on_checkout, start_credit_checkout, start_upsell_checkout


logger = logging.getLogger(__name__)

router = APIRouter()

_PAID_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
_FAILED_EVENTS = {"checkout.session.expired", "checkout.session.async_payment_failed"}
_SUBSCRIPTION_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
}


@router.get("/billing/catalog")
async def get_catalog() -> dict:
    return catalog.catalog_snapshot()


@router.post("/billing/checkout/session", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CheckoutSessionRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    user: CurrentUser = Depends(require_employer),
    gateway: StripeGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    intent = start_credit_checkout(
        db,
        gateway,
        user,
        body.pack_key,
        add_on_keys=body.add_ons,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
        idempotency_key=idempotency_key,
    )
    return CheckoutResponse(**intent.__dict__)


@router.post("/billing/addons/checkout", response_model=CheckoutResponse)
async def create_add_on_checkout(
    body: AddOnCheckoutRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    user: CurrentUser = Depends(require_employer),
    gateway: StripeGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    intent = start_add_on_checkout(
        db,
        gateway,
        user,
        body.add_on_key,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
        idempotency_key=idempotency_key,
    )
    return CheckoutResponse(**intent.__dict__)


@router.post("/billing/upsells/checkout", response_model=CheckoutResponse)
async def create_upsell_checkout(
    body: UpsellCheckoutRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    user: CurrentUser = Depends(require_employer),
    gateway: StripeGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    intent = start_upsell_checkout(
        db,
        gateway,
        user,
        body.job_id,
        social_media_shoutout=body.social_media_shoutout,
        placement_bump=body.placement_bump,
        upsell_bundle=body.upsell_bundle,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
        idempotency_key=idempotency_key,
    )
    return CheckoutResponse(**intent.__dict__)


@router.post("/billing/checkout/confirm", response_model=FulfillmentResponse)
async def confirm_checkout_session(
    body: ConfirmSessionRequest,
    user: CurrentUser = Depends(require_employer),
    gateway: StripeGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    """Fallback for when the redirect lands before the webhook does."""
    session = gateway.retrieve_checkout_session(body.session_id)
    owner = session.metadata.get("userId") or session.metadata.get("user_id")
    if owner and owner != user.id:
        raise OwnershipMismatch("Checkout session belongs to another account")
    if not session.is_paid:
        raise HTTPException(status_code=409, detail="Checkout session is not paid yet")
    result = fulfill_checkout_session(db, session.id, metadata=session.metadata)
    if result.user_id != user.id:
        raise OwnershipMismatch("Checkout session belongs to another account")
    return FulfillmentResponse(
        status=result.status,
        kind=result.kind,
        record_id=result.record_id,
        credits_issued=result.credits_issued,
        grant_id=result.grant_id,
        job_id=result.job_id,
    )


@router.post("/billing/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
) -> dict:
    raw = await request.body()
    event = verify_webhook_signature(
        raw,
        stripe_signature,
        settings.stripe_webhook_secret,
        tolerance_s=settings.stripe_webhook_tolerance_s,
    )
    event_type = str(event.get("type") or "")
    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    obj = data.get("object") or {}
    logger.info("billing.webhook.received event_id=%s type=%s", event.get("id"), event_type)

    if event_type in _PAID_EVENTS:
        if obj.get("mode") == "subscription":
            subscription = {
                "id": obj.get("subscription"),
                "customer": obj.get("customer"),
                "status": "active",
                "metadata": obj.get("metadata") or {},
            }
            sync_subscription(db, "customer.subscription.created", subscription)
            return {"received": True, "status": "subscription_synced"}
        if obj.get("payment_status") not in {"paid", "no_payment_required"}:
            # Delayed payment methods complete the session before the money arrives.
            return {"received": True, "status": "awaiting_payment"}
        try:
            result = fulfill_checkout_session(db, str(obj.get("id") or ""), metadata=obj.get("metadata") or {})
        except UnknownPurchase:
            # Acknowledged so the gateway stops retrying; the error log is the alert.
            return {"received": True, "status": "unknown_purchase"}
        return {"received": True, "status": result.status}

    if event_type in _FAILED_EVENTS:
        changed = mark_checkout_failed(db, str(obj.get("id") or ""))
        return {"received": True, "status": "marked_failed" if changed else "ignored"}

    if event_type in _SUBSCRIPTION_EVENTS:
        sync_subscription(db, event_type, obj)
        return {"received": True, "status": "subscription_synced"}

    return {"received": True, "status": "ignored"}
