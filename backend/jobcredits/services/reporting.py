from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session

from jobcredits.models.add_on import AddOnApplication, UserAddOnGrant
from jobcredits.models.credit_unit import CreditType, CreditUnit
from jobcredits.models.purchase import Purchase, PurchaseStatus
from jobcredits.models.upsell_purchase import UpsellPurchase, UpsellStatus
from jobcredits.services.credits_engine import as_utc, credit_summary, utcnow


TOP_HOLDERS_LIMIT = 8
RECENT_PURCHASES_LIMIT = 20


def _enum_value(v: Any) -> str:
    return getattr(v, "value", None) or str(v)


def _unit_counts(db: Session, now: datetime) -> tuple[dict[str, int], dict[str, dict[str, int]]]:
    expired_expr = and_(CreditUnit.is_used.is_(False), CreditUnit.expires_at <= now)
    active_expr = and_(CreditUnit.is_used.is_(False), CreditUnit.expires_at > now)
    rows = (
        db.query(
            CreditUnit.credit_type,
            func.count(CreditUnit.id),
            func.sum(case((CreditUnit.is_used.is_(True), 1), else_=0)),
            func.sum(case((expired_expr, 1), else_=0)),
            func.sum(case((active_expr, 1), else_=0)),
        )
        .group_by(CreditUnit.credit_type)
        .all()
    )
    totals = {"issued": 0, "used": 0, "expired": 0, "active": 0}
    by_type = {t.value: {"issued": 0, "used": 0, "expired": 0, "active": 0} for t in CreditType}
    for credit_type, issued, used, expired, active in rows:
        bucket = by_type[_enum_value(credit_type)]
        bucket["issued"] = int(issued or 0)
        bucket["used"] = int(used or 0)
        bucket["expired"] = int(expired or 0)
        bucket["active"] = int(active or 0)
        for k in totals:
            totals[k] += bucket[k]
    return totals, by_type


def credit_report(db: Session, now: datetime | None = None) -> dict[str, Any]:
    """Operator dashboard aggregates, derived entirely from the ledger tables."""
    now = now or utcnow()
    totals, by_type = _unit_counts(db, now)

    purchases_by_status = {s.value: 0 for s in PurchaseStatus}
    for status, count in db.query(Purchase.status, func.count(Purchase.id)).group_by(Purchase.status).all():
        purchases_by_status[_enum_value(status)] = int(count or 0)

    upsells_by_status = {s.value: 0 for s in UpsellStatus}
    for status, count in db.query(UpsellPurchase.status, func.count(UpsellPurchase.id)).group_by(UpsellPurchase.status).all():
        upsells_by_status[_enum_value(status)] = int(count or 0)

    purchase_revenue = (
        db.query(func.coalesce(func.sum(Purchase.total_amount_cents), 0))
        .filter(Purchase.status == PurchaseStatus.COMPLETED)
        .scalar()
    )
    upsell_revenue = (
        db.query(func.coalesce(func.sum(UpsellPurchase.total_amount_cents), 0))
        .filter(UpsellPurchase.status == UpsellStatus.PAID)
        .scalar()
    )

    active_grants = (
        db.query(func.count(UserAddOnGrant.id))
        .filter(UserAddOnGrant.is_active.is_(True))
        .filter((UserAddOnGrant.expires_at.is_(None)) | (UserAddOnGrant.expires_at > now))
        .scalar()
    )
    applications = db.query(func.count(AddOnApplication.id)).scalar()

    top_rows = (
        db.query(CreditUnit.user_id, func.count(CreditUnit.id).label("active"))
        .filter(CreditUnit.is_used.is_(False), CreditUnit.expires_at > now)
        .group_by(CreditUnit.user_id)
        .order_by(func.count(CreditUnit.id).desc(), CreditUnit.user_id.asc())
        .limit(TOP_HOLDERS_LIMIT)
        .all()
    )

    recent = db.query(Purchase).order_by(Purchase.id.desc()).limit(RECENT_PURCHASES_LIMIT).all()

    return {
        "generated_at": now.isoformat(),
        "credits": totals,
        "credits_by_type": by_type,
        "purchases_by_status": purchases_by_status,
        "upsells_by_status": upsells_by_status,
        "revenue_cents": int(purchase_revenue or 0) + int(upsell_revenue or 0),
        "add_ons": {"active_grants": int(active_grants or 0), "applications": int(applications or 0)},
        "top_credit_holders": [{"user_id": uid, "active_credits": int(n or 0)} for uid, n in top_rows],
        "recent_purchases": [
            {
                "id": p.id,
                "user_id": p.user_id,
                "kind": _enum_value(p.kind),
                "selection_key": p.selection_key,
                "status": _enum_value(p.status),
                "total_amount_cents": int(p.total_amount_cents or 0),
                "credits": p.credit_counts(),
                "completed_at": (as_utc(p.completed_at).isoformat() if p.completed_at else None),
            }
            for p in recent
        ],
    }


def user_ledger_summary(db: Session, user_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Employer view: available credits per type plus their purchase history."""
    now = now or utcnow()
    summary = credit_summary(db, user_id, now=now)
    for bucket in summary["by_type"].values():
        if bucket["next_expires_at"] is not None:
            bucket["next_expires_at"] = bucket["next_expires_at"].isoformat()

    purchases = (
        db.query(Purchase)
        .filter(Purchase.user_id == user_id)
        .order_by(Purchase.id.desc())
        .limit(RECENT_PURCHASES_LIMIT)
        .all()
    )
    summary["purchases"] = [
        {
            "id": p.id,
            "kind": _enum_value(p.kind),
            "selection_key": p.selection_key,
            "status": _enum_value(p.status),
            "total_amount_cents": int(p.total_amount_cents or 0),
            "credits": p.credit_counts(),
            "created_at": (as_utc(p.created_at).isoformat() if p.created_at else None),
            "expires_at": (as_utc(p.expires_at).isoformat() if p.expires_at else None),
        }
        for p in purchases
    ]
    summary["active_add_on_grants"] = int(
        db.query(func.count(UserAddOnGrant.id))
        .filter(UserAddOnGrant.user_id == user_id, UserAddOnGrant.is_active.is_(True))
        .filter((UserAddOnGrant.expires_at.is_(None)) | (UserAddOnGrant.expires_at > now))
        .scalar()
        or 0
    )
    return summary
