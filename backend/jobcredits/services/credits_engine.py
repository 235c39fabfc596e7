from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from jobcredits.models.credit_unit import CreditType, CreditUnit
from jobcredits.models.purchase import Purchase, PurchaseKind, PurchaseStatus


logger = logging.getLogger(__name__)

# Bounded retries when a concurrent consumer wins the unit we picked.
MAX_CONSUME_ATTEMPTS = 5

ADMIN_GRANT_DEFAULT_DAYS = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_type(credit_type: CreditType | str) -> CreditType:
    if isinstance(credit_type, CreditType):
        return credit_type
    return CreditType(str(credit_type).strip().lower())


def _eligible_units(db: Session, user_id: str, credit_type: CreditType, now: datetime):
    return (
        db.query(CreditUnit)
        .filter(CreditUnit.user_id == user_id)
        .filter(CreditUnit.credit_type == credit_type)
        .filter(CreditUnit.is_used.is_(False))
        .filter(CreditUnit.expires_at > now)
    )


def has_credit(db: Session, user_id: str, credit_type: CreditType | str, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return _eligible_units(db, user_id, _coerce_type(credit_type), now).first() is not None


def available_credits(db: Session, user_id: str, now: datetime | None = None) -> dict[str, int]:
    now = now or utcnow()
    rows = (
        db.query(CreditUnit.credit_type, func.count(CreditUnit.id))
        .filter(CreditUnit.user_id == user_id)
        .filter(CreditUnit.is_used.is_(False))
        .filter(CreditUnit.expires_at > now)
        .group_by(CreditUnit.credit_type)
        .all()
    )
    counts = {t.value: 0 for t in CreditType}
    for credit_type, count in rows:
        counts[_coerce_type(credit_type).value] = int(count or 0)
    return counts


def try_consume_credit(
    db: Session,
    user_id: str,
    credit_type: CreditType | str,
    used_for_job_id: int | None = None,
    now: datetime | None = None,
) -> CreditUnit | None:
    """Atomically flag one eligible unit as used and return it.

    Returns ``None`` when the user has no unused, unexpired unit of the type.
    The earliest-expiring unit is taken first. The caller owns the transaction:
    nothing here commits, so a failing side effect rolls the flip back with it.
    """
    now = now or utcnow()
    credit_type = _coerce_type(credit_type)

    for attempt in range(MAX_CONSUME_ATTEMPTS):
        candidate = (
            _eligible_units(db, user_id, credit_type, now)
            .order_by(CreditUnit.expires_at.asc(), CreditUnit.issued_at.asc(), CreditUnit.id.asc())
            .with_for_update(skip_locked=True)
            .first()
        )
        if candidate is None:
            logger.info("credits.consume.insufficient user_id=%s credit_type=%s", user_id, credit_type.value)
            return None

        # Conditional write: only flips if nobody else flipped it first.
        updated = (
            db.query(CreditUnit)
            .filter(CreditUnit.id == candidate.id, CreditUnit.is_used.is_(False))
            .update(
                {
                    CreditUnit.is_used: True,
                    CreditUnit.used_at: now,
                    CreditUnit.used_for_job_id: used_for_job_id,
                },
                synchronize_session=False,
            )
        )
        if updated == 1:
            db.refresh(candidate)
            logger.info(
                "credits.consume.ok user_id=%s credit_type=%s unit_id=%s job_id=%s",
                user_id,
                credit_type.value,
                candidate.id,
                used_for_job_id,
            )
            return candidate
        logger.info("credits.consume.lost_race user_id=%s unit_id=%s attempt=%s", user_id, candidate.id, attempt + 1)

    return None


def restore_credit(db: Session, unit: CreditUnit) -> bool:
    """Compensating step for callers that could not share a transaction with the consume."""
    restored = (
        db.query(CreditUnit)
        .filter(CreditUnit.id == unit.id, CreditUnit.is_used.is_(True))
        .update(
            {CreditUnit.is_used: False, CreditUnit.used_at: None, CreditUnit.used_for_job_id: None},
            synchronize_session=False,
        )
    )
    if restored:
        db.refresh(unit)
        logger.info("credits.restore.ok user_id=%s unit_id=%s", unit.user_id, unit.id)
    return restored == 1


def mint_credits(db: Session, purchase: Purchase, now: datetime | None = None) -> list[CreditUnit]:
    """Issue exactly the units recorded on ``purchase``. Does not commit."""
    now = now or utcnow()
    expires_at = as_utc(purchase.expires_at) or (now + timedelta(days=int(purchase.expiration_days or 0)))
    units: list[CreditUnit] = []
    for type_value, count in purchase.credit_counts().items():
        for _ in range(max(0, int(count))):
            units.append(
                CreditUnit(
                    user_id=purchase.user_id,
                    credit_type=CreditType(type_value),
                    purchase_id=purchase.id,
                    is_used=False,
                    issued_at=now,
                    expires_at=expires_at,
                )
            )
    db.add_all(units)
    db.flush()
    return units


def grant_admin_credits(
    db: Session,
    user_id: str,
    credit_type: CreditType | str,
    amount: int,
    reason: str | None = None,
    granted_by: str | None = None,
    expires_days: int | None = None,
    now: datetime | None = None,
) -> Purchase:
    now = now or utcnow()
    credit_type = _coerce_type(credit_type)
    amount = int(amount)
    if amount <= 0:
        raise ValueError("amount must be positive")
    days = int(expires_days or ADMIN_GRANT_DEFAULT_DAYS)

    counts = {t.value: 0 for t in CreditType}
    counts[credit_type.value] = amount
    purchase = Purchase(
        user_id=user_id,
        kind=PurchaseKind.ADMIN_GRANT,
        selection_key=credit_type.value,
        external_session_id=f"admin_grant:{uuid4()}",
        status=PurchaseStatus.COMPLETED,
        job_post_credits=counts[CreditType.JOB_POST.value],
        featured_post_credits=counts[CreditType.FEATURED_POST.value],
        social_graphic_credits=counts[CreditType.SOCIAL_GRAPHIC.value],
        repost_credits=counts[CreditType.REPOST.value],
        total_amount_cents=0,
        expiration_days=days,
        expires_at=now + timedelta(days=days),
        completed_at=now,
        purchase_metadata={"reason": reason, "granted_by": granted_by},
    )
    try:
        db.add(purchase)
        db.flush()
        mint_credits(db, purchase, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(purchase)
    logger.info(
        "credits.admin_grant user_id=%s credit_type=%s amount=%s granted_by=%s",
        user_id,
        credit_type.value,
        amount,
        granted_by,
    )
    return purchase


def list_credit_units(db: Session, user_id: str, include_used: bool = False, limit: int = 200) -> list[CreditUnit]:
    q = db.query(CreditUnit).filter(CreditUnit.user_id == user_id)
    if not include_used:
        q = q.filter(CreditUnit.is_used.is_(False))
    return q.order_by(CreditUnit.expires_at.asc(), CreditUnit.id.asc()).limit(limit).all()


def credit_summary(db: Session, user_id: str, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    units = db.query(CreditUnit).filter(CreditUnit.user_id == user_id).all()
    by_type: dict[str, dict[str, Any]] = {
        t.value: {"available": 0, "used": 0, "expired": 0, "next_expires_at": None} for t in CreditType
    }
    for unit in units:
        bucket = by_type[_coerce_type(unit.credit_type).value]
        expires_at = as_utc(unit.expires_at)
        if unit.is_used:
            bucket["used"] += 1
        elif expires_at is not None and expires_at <= now:
            bucket["expired"] += 1
        else:
            bucket["available"] += 1
            if bucket["next_expires_at"] is None or expires_at < bucket["next_expires_at"]:
                bucket["next_expires_at"] = expires_at
    return {
        "user_id": user_id,
        "job_post_credits": by_type[CreditType.JOB_POST.value]["available"],
        "by_type": by_type,
    }
