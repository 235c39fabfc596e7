from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from jobcredits.core.errors import UnknownPurchase
from jobcredits.models.add_on import UserAddOnGrant
from jobcredits.models.job import Job
from jobcredits.models.purchase import Purchase, PurchaseKind, PurchaseStatus
from jobcredits.models.subscription import Subscription
from jobcredits.models.upsell_purchase import UpsellPurchase, UpsellStatus
from jobcredits.services.credits_engine import mint_credits, utcnow
from jobcredits.services.work_queue import enqueue_social_post


logger = logging.getLogger(__name__)

FULFILLED = "fulfilled"
ALREADY_FULFILLED = "already_fulfilled"

# A failed purchase is one the gateway reported abandoned or a sweep marked stale;
# a later payment confirmation still wins.
_FULFILLABLE_PURCHASE = (PurchaseStatus.PENDING, PurchaseStatus.FAILED)
_FULFILLABLE_UPSELL = (UpsellStatus.PENDING, UpsellStatus.FAILED)


@dataclass
class FulfillmentResult:
    status: str
    kind: str
    record_id: int
    user_id: str
    credits_issued: dict[str, int] = field(default_factory=dict)
    grant_id: int | None = None
    job_id: int | None = None

    @property
    def created(self) -> bool:
        return self.status == FULFILLED


def _check_metadata_owner(session_id: str, owner_id: str, metadata: dict[str, Any] | None) -> None:
    echoed = str((metadata or {}).get("userId") or (metadata or {}).get("user_id") or "").strip()
    if echoed and echoed != owner_id:
        logger.error(
            "fulfillment.metadata_mismatch session_id=%s record_user_id=%s echoed_user_id=%s",
            session_id,
            owner_id,
            echoed,
        )
        raise UnknownPurchase("Checkout metadata does not match the purchase owner")


def fulfill_checkout_session(
    db: Session,
    session_id: str,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> FulfillmentResult:
    """Turn a confirmed checkout into entitlements, exactly once per session id.

    Repeat or concurrent deliveries observe the completed record and return
    ``already_fulfilled`` without side effects.
    """
    now = now or utcnow()
    session_id = str(session_id or "").strip()

    purchase = db.query(Purchase).filter(Purchase.external_session_id == session_id).first()
    if purchase is not None:
        return _fulfill_purchase(db, purchase, metadata, now)

    upsell = db.query(UpsellPurchase).filter(UpsellPurchase.external_session_id == session_id).first()
    if upsell is not None:
        return _fulfill_upsell(db, upsell, metadata, now)

    logger.error("fulfillment.unknown_purchase session_id=%s kind=%s", session_id, (metadata or {}).get("kind"))
    raise UnknownPurchase(f"No purchase for session {session_id}")


def _fulfill_purchase(db: Session, purchase: Purchase, metadata: dict[str, Any] | None, now: datetime) -> FulfillmentResult:
    session_id = purchase.external_session_id
    _check_metadata_owner(session_id, purchase.user_id, metadata)
    result = FulfillmentResult(
        status=ALREADY_FULFILLED,
        kind=purchase.kind.value,
        record_id=purchase.id,
        user_id=purchase.user_id,
    )
    if purchase.status == PurchaseStatus.COMPLETED:
        logger.info("fulfillment.duplicate session_id=%s purchase_id=%s", session_id, purchase.id)
        return result

    expires_at = now + timedelta(days=int(purchase.expiration_days or 0))
    try:
        claimed = (
            db.query(Purchase)
            .filter(Purchase.id == purchase.id, Purchase.status.in_(_FULFILLABLE_PURCHASE))
            .update(
                {
                    Purchase.status: PurchaseStatus.COMPLETED,
                    Purchase.completed_at: now,
                    Purchase.expires_at: expires_at,
                },
                synchronize_session=False,
            )
        )
        if claimed != 1:
            db.rollback()
            logger.info("fulfillment.duplicate session_id=%s purchase_id=%s lost_race=true", session_id, purchase.id)
            return result

        db.refresh(purchase)
        if purchase.kind == PurchaseKind.ADDON:
            grant = UserAddOnGrant(
                user_id=purchase.user_id,
                add_on_key=purchase.selection_key,
                purchase_id=purchase.id,
                is_active=True,
                price_paid_cents=int(purchase.total_amount_cents or 0),
                purchased_at=now,
                expires_at=expires_at,
            )
            db.add(grant)
            db.flush()
            result.grant_id = grant.id
        else:
            units = mint_credits(db, purchase, now=now)
            issued: dict[str, int] = {}
            for unit in units:
                issued[unit.credit_type.value] = issued.get(unit.credit_type.value, 0) + 1
            if sum(issued.values()) != sum(purchase.credit_counts().values()):
                raise RuntimeError(f"credit issuance mismatch for purchase {purchase.id}")
            result.credits_issued = issued
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("fulfillment.error session_id=%s purchase_id=%s", session_id, purchase.id)
        raise

    result.status = FULFILLED
    logger.info(
        "fulfillment.completed session_id=%s purchase_id=%s kind=%s user_id=%s credits=%s grant_id=%s",
        session_id,
        purchase.id,
        purchase.kind.value,
        purchase.user_id,
        result.credits_issued,
        result.grant_id,
    )
    return result


def _fulfill_upsell(db: Session, upsell: UpsellPurchase, metadata: dict[str, Any] | None, now: datetime) -> FulfillmentResult:
    session_id = upsell.external_session_id
    _check_metadata_owner(session_id, upsell.user_id, metadata)
    result = FulfillmentResult(
        status=ALREADY_FULFILLED,
        kind="upsell",
        record_id=upsell.id,
        user_id=upsell.user_id,
        job_id=upsell.job_id,
    )
    if upsell.status == UpsellStatus.PAID:
        logger.info("fulfillment.duplicate session_id=%s upsell_id=%s", session_id, upsell.id)
        return result

    try:
        claimed = (
            db.query(UpsellPurchase)
            .filter(UpsellPurchase.id == upsell.id, UpsellPurchase.status.in_(_FULFILLABLE_UPSELL))
            .update({UpsellPurchase.status: UpsellStatus.PAID, UpsellPurchase.paid_at: now}, synchronize_session=False)
        )
        if claimed != 1:
            db.rollback()
            logger.info("fulfillment.duplicate session_id=%s upsell_id=%s lost_race=true", session_id, upsell.id)
            return result

        db.refresh(upsell)
        job = db.query(Job).filter(Job.id == upsell.job_id).first()
        if job is None:
            logger.warning("fulfillment.upsell.missing_job session_id=%s job_id=%s", session_id, upsell.job_id)
        else:
            if upsell.placement_bump:
                job.placement_bump = True
            if upsell.upsell_bundle:
                job.upsell_bundle = True
            if upsell.social_media_shoutout:
                job.social_media_shoutout = True
                enqueue_social_post(db, job, source=f"upsell:{upsell.id}")
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("fulfillment.error session_id=%s upsell_id=%s", session_id, upsell.id)
        raise

    result.status = FULFILLED
    logger.info("fulfillment.completed session_id=%s upsell_id=%s job_id=%s", session_id, upsell.id, upsell.job_id)
    return result


def mark_checkout_failed(db: Session, session_id: str) -> bool:
    """Record an abandoned or failed checkout. Only pending records change."""
    try:
        changed = (
            db.query(Purchase)
            .filter(Purchase.external_session_id == session_id, Purchase.status == PurchaseStatus.PENDING)
            .update({Purchase.status: PurchaseStatus.FAILED}, synchronize_session=False)
        )
        if not changed:
            changed = (
                db.query(UpsellPurchase)
                .filter(UpsellPurchase.external_session_id == session_id, UpsellPurchase.status == UpsellStatus.PENDING)
                .update({UpsellPurchase.status: UpsellStatus.FAILED}, synchronize_session=False)
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    if changed:
        logger.info("fulfillment.checkout_failed session_id=%s", session_id)
    return bool(changed)


def sweep_stale_pending(db: Session, older_than_days: int, now: datetime | None = None) -> int:
    """Mark long-abandoned pending purchases failed. Reporting hygiene only."""
    now = now or utcnow()
    cutoff = now - timedelta(days=int(older_than_days))
    try:
        swept = (
            db.query(Purchase)
            .filter(Purchase.status == PurchaseStatus.PENDING, Purchase.created_at < cutoff)
            .update({Purchase.status: PurchaseStatus.FAILED}, synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("fulfillment.sweep_stale_pending cutoff=%s swept=%s", cutoff.isoformat(), swept)
    return int(swept or 0)


def _from_epoch(raw: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def _subscription_status(stripe_status: str) -> str:
    return {
        "active": "active",
        "trialing": "trial",
        "past_due": "past_due",
        "unpaid": "past_due",
        "canceled": "cancelled",
        "cancelled": "cancelled",
    }.get(stripe_status, "active")


def sync_subscription(db: Session, event_type: str, obj: dict[str, Any]) -> Subscription | None:
    """Keep the subscriptions table in step with gateway subscription events."""
    obj = obj or {}
    if event_type.startswith("invoice."):
        subscription_id = str(obj.get("subscription") or "").strip()
        if not subscription_id:
            return None
        sub = db.query(Subscription).filter(Subscription.stripe_subscription_id == subscription_id).first()
        if sub is None:
            logger.warning("fulfillment.subscription.unknown subscription_id=%s event=%s", subscription_id, event_type)
            return None
        sub.status = "active" if event_type == "invoice.payment_succeeded" else "past_due"
        db.commit()
        return sub

    subscription_id = str(obj.get("id") or "").strip()
    metadata = obj.get("metadata") or {}
    user_id = str(metadata.get("userId") or metadata.get("user_id") or "").strip()
    sub = None
    if subscription_id:
        sub = db.query(Subscription).filter(Subscription.stripe_subscription_id == subscription_id).first()
    if sub is None and user_id:
        sub = db.query(Subscription).filter(Subscription.user_id == user_id).first()
    if sub is None:
        if not user_id:
            logger.warning("fulfillment.subscription.missing_user subscription_id=%s", subscription_id)
            return None
        sub = Subscription(user_id=user_id)
        db.add(sub)

    try:
        if event_type == "customer.subscription.deleted":
            sub.status = "cancelled"
            sub.current_period_end = utcnow()
        else:
            sub.status = _subscription_status(str(obj.get("status") or "active"))
            sub.current_period_end = _from_epoch(obj.get("current_period_end")) or sub.current_period_end
        sub.tier = str(metadata.get("tier") or "").strip().lower() or sub.tier
        sub.stripe_subscription_id = subscription_id or sub.stripe_subscription_id
        customer = obj.get("customer")
        if isinstance(customer, str) and customer:
            sub.stripe_customer_id = customer
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(sub)
    logger.info("fulfillment.subscription.synced user_id=%s status=%s event=%s", sub.user_id, sub.status, event_type)
    return sub
