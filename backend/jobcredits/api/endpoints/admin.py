from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from jobcredits.core.database import get_db
from jobcredits.core.security import CurrentUser, require_admin
from jobcredits.core.settings import settings
from jobcredits.schemas.billing import AdminCreditAssignRequest, SweepRequest
from jobcredits.services.credits_engine import available_credits, grant_admin_credits
from jobcredits.services.fulfillment import sweep_stale_pending
from jobcredits.services.reporting import credit_report


router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/admin/credits/report")
async def admin_credit_report(db: Session = Depends(get_db)) -> dict:
    return credit_report(db)


@router.post("/admin/credits/assign")
async def admin_assign_credits(
    body: AdminCreditAssignRequest,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict:
    try:
        purchase = grant_admin_credits(
            db,
            body.user_id,
            body.credit_type,
            body.amount,
            reason=body.reason,
            granted_by=admin.id,
            expires_days=body.expires_days,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "purchase_id": purchase.id,
        "user_id": body.user_id,
        "credits": purchase.credit_counts(),
        "expires_at": purchase.expires_at.isoformat() if purchase.expires_at else None,
        "available": available_credits(db, body.user_id),
    }


@router.post("/admin/purchases/sweep")
async def admin_sweep_pending(body: SweepRequest | None = None, db: Session = Depends(get_db)) -> dict:
    days = (body.older_than_days if body else None) or settings.pending_purchase_stale_days
    swept = sweep_stale_pending(db, days)
    return {"older_than_days": days, "swept": swept}
