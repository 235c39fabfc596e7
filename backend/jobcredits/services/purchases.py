"""Purchase initiation: gateway checkout plus a matching pending record.

The pending row is committed before the checkout URL is handed back, so a
webhook that beats the HTTP response still finds something to fulfil.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol

from sqlalchemy.orm import Session

from jobcredits.core.errors import InvalidSelection, JobNotFound, OwnershipMismatch, SubscriptionRequired
from jobcredits.core.security import CurrentUser
from jobcredits.core.settings import settings
from jobcredits.models.job import Job
from jobcredits.models.purchase import Purchase, PurchaseKind, PurchaseStatus
from jobcredits.models.subscription import ACTIVE_SUBSCRIPTION_STATUSES, Subscription
from jobcredits.models.upsell_purchase import UpsellPurchase, UpsellStatus
from jobcredits.services import catalog
from jobcredits.services.credits_engine import as_utc, utcnow
from jobcredits.services.payment_gateway import GatewaySession


logger = logging.getLogger(__name__)


class CheckoutGateway(Protocol):
    def create_checkout_session(
        self,
        *,
        line_items: list[dict],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> GatewaySession: ...


@dataclass
class CheckoutIntent:
    kind: str
    record_id: int
    session_id: str
    url: str | None
    total_amount_cents: int
    credits: dict[str, int] | None = None


def has_active_subscription(db: Session, user_id: str, now: datetime | None = None) -> bool:
    now = now or utcnow()
    sub = db.query(Subscription).filter(Subscription.user_id == user_id).first()
    if sub is None:
        return False
    if (sub.status or "").lower() not in ACTIVE_SUBSCRIPTION_STATUSES:
        return False
    period_end = as_utc(sub.current_period_end)
    return period_end is None or period_end > now


def _return_urls(success_url: str | None, cancel_url: str | None) -> tuple[str, str]:
    return (success_url or settings.default_success_url(), cancel_url or settings.default_cancel_url())


def _existing_purchase_intent(db: Session, user_id: str, session_id: str) -> CheckoutIntent | None:
    existing = db.query(Purchase).filter(Purchase.external_session_id == session_id).first()
    if existing is None:
        return None
    if existing.user_id != user_id:
        raise OwnershipMismatch("Checkout session belongs to another account")
    meta = existing.purchase_metadata or {}
    return CheckoutIntent(
        kind=existing.kind.value,
        record_id=existing.id,
        session_id=session_id,
        url=meta.get("checkout_url"),
        total_amount_cents=int(existing.total_amount_cents or 0),
        credits=existing.credit_counts(),
    )


def _persist(db: Session, record) -> None:
    try:
        db.add(record)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)


def start_credit_checkout(
    db: Session,
    gateway: CheckoutGateway,
    user: CurrentUser,
    pack_key: str,
    add_on_keys: Iterable[str] = (),
    success_url: str | None = None,
    cancel_url: str | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> CheckoutIntent:
    pack = catalog.get_pack(pack_key)
    add_ons = [catalog.get_add_on(k) for k in dict.fromkeys(add_on_keys or ())]

    if pack.requires_subscription and settings.credit_purchase_requires_subscription:
        if not has_active_subscription(db, user.id, now=now):
            raise SubscriptionRequired(
                "Credit packs are available to subscribers only",
                redirect_url=settings.upgrade_url,
            )

    line_items = [{"price": catalog.gateway_price_id(pack.key), "quantity": 1}]
    for add_on in add_ons:
        line_items.append({"price": catalog.gateway_price_id(add_on.key), "quantity": 1})

    featured = pack.featured_post_credits + sum(1 for a in add_ons if a.grants_featured_credit)
    social = pack.social_graphic_credits + sum(1 for a in add_ons if a.grants_social_credit)
    total = pack.price_cents + sum(a.price_cents for a in add_ons)
    kind = PurchaseKind.TIER if pack.kind == "tier" else PurchaseKind.CREDIT_PACK

    ok_url, back_url = _return_urls(success_url, cancel_url)
    session = gateway.create_checkout_session(
        line_items=line_items,
        success_url=ok_url,
        cancel_url=back_url,
        metadata={
            "userId": user.id,
            "kind": kind.value,
            "packId": pack.key,
            "addons": ",".join(a.key for a in add_ons),
            "jobCredits": str(pack.job_post_credits),
            "featuredCredits": str(featured),
            "socialCredits": str(social),
            "totalAmount": str(total),
        },
        customer_email=user.email or None,
        idempotency_key=idempotency_key,
    )

    existing = _existing_purchase_intent(db, user.id, session.id)
    if existing is not None:
        logger.info("purchases.checkout.reused session_id=%s user_id=%s", session.id, user.id)
        return existing

    purchase = Purchase(
        user_id=user.id,
        kind=kind,
        selection_key=pack.key,
        add_on_keys=[a.key for a in add_ons],
        external_session_id=session.id,
        status=PurchaseStatus.PENDING,
        job_post_credits=pack.job_post_credits,
        featured_post_credits=featured,
        social_graphic_credits=social,
        repost_credits=0,
        total_amount_cents=total,
        expiration_days=pack.expiration_days,
        purchase_metadata={"checkout_url": session.url, "success_url": ok_url, "cancel_url": back_url},
    )
    _persist(db, purchase)
    logger.info(
        "purchases.checkout.created kind=%s pack=%s session_id=%s user_id=%s total_cents=%s",
        kind.value,
        pack.key,
        session.id,
        user.id,
        total,
    )
    return CheckoutIntent(
        kind=kind.value,
        record_id=purchase.id,
        session_id=session.id,
        url=session.url,
        total_amount_cents=total,
        credits=purchase.credit_counts(),
    )


def start_add_on_checkout(
    db: Session,
    gateway: CheckoutGateway,
    user: CurrentUser,
    add_on_key: str,
    success_url: str | None = None,
    cancel_url: str | None = None,
    idempotency_key: str | None = None,
) -> CheckoutIntent:
    add_on = catalog.get_add_on(add_on_key)
    ok_url, back_url = _return_urls(success_url, cancel_url)
    session = gateway.create_checkout_session(
        line_items=[{"price": catalog.gateway_price_id(add_on.key), "quantity": 1}],
        success_url=ok_url,
        cancel_url=back_url,
        metadata={"userId": user.id, "kind": PurchaseKind.ADDON.value, "addonId": add_on.key},
        customer_email=user.email or None,
        idempotency_key=idempotency_key,
    )

    existing = _existing_purchase_intent(db, user.id, session.id)
    if existing is not None:
        return existing

    purchase = Purchase(
        user_id=user.id,
        kind=PurchaseKind.ADDON,
        selection_key=add_on.key,
        external_session_id=session.id,
        status=PurchaseStatus.PENDING,
        total_amount_cents=add_on.price_cents,
        expiration_days=add_on.expiration_days,
        purchase_metadata={"checkout_url": session.url, "success_url": ok_url, "cancel_url": back_url},
    )
    _persist(db, purchase)
    logger.info("purchases.addon_checkout.created add_on=%s session_id=%s user_id=%s", add_on.key, session.id, user.id)
    return CheckoutIntent(
        kind=PurchaseKind.ADDON.value,
        record_id=purchase.id,
        session_id=session.id,
        url=session.url,
        total_amount_cents=add_on.price_cents,
    )


def start_upsell_checkout(
    db: Session,
    gateway: CheckoutGateway,
    user: CurrentUser,
    job_id: int,
    social_media_shoutout: bool = False,
    placement_bump: bool = False,
    upsell_bundle: bool = False,
    success_url: str | None = None,
    cancel_url: str | None = None,
    idempotency_key: str | None = None,
) -> CheckoutIntent:
    flags, items = catalog.resolve_upsell_selection(
        social_media_shoutout=social_media_shoutout,
        placement_bump=placement_bump,
        upsell_bundle=upsell_bundle,
    )
    job = db.query(Job).filter(Job.id == int(job_id)).first()
    if job is None:
        raise JobNotFound()
    if job.employer_id != user.id:
        raise OwnershipMismatch("You do not own this job")

    total = catalog.upsell_total_cents(items)
    ok_url, back_url = _return_urls(success_url, cancel_url)
    session = gateway.create_checkout_session(
        line_items=[{"price": catalog.gateway_price_id(k), "quantity": 1} for k in items],
        success_url=ok_url,
        cancel_url=back_url,
        metadata={
            "userId": user.id,
            "kind": "upsell",
            "jobId": str(job.id),
            "upsells": ",".join(items),
            "totalAmount": str(total),
        },
        customer_email=user.email or None,
        idempotency_key=idempotency_key,
    )

    existing = db.query(UpsellPurchase).filter(UpsellPurchase.external_session_id == session.id).first()
    if existing is not None:
        if existing.user_id != user.id:
            raise OwnershipMismatch("Checkout session belongs to another account")
        return CheckoutIntent(
            kind="upsell",
            record_id=existing.id,
            session_id=session.id,
            url=(existing.purchase_metadata or {}).get("checkout_url"),
            total_amount_cents=int(existing.total_amount_cents or 0),
        )

    upsell = UpsellPurchase(
        user_id=user.id,
        job_id=job.id,
        external_session_id=session.id,
        total_amount_cents=total,
        status=UpsellStatus.PENDING,
        purchase_metadata={"checkout_url": session.url, "items": items},
        **flags,
    )
    _persist(db, upsell)
    logger.info("purchases.upsell_checkout.created job_id=%s items=%s session_id=%s", job.id, ",".join(items), session.id)
    return CheckoutIntent(
        kind="upsell",
        record_id=upsell.id,
        session_id=session.id,
        url=session.url,
        total_amount_cents=total,
    )
