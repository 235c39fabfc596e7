from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, selectinload

from jobcredits.core.database import get_db
from jobcredits.core.security import CurrentUser, get_current_user
from jobcredits.models.add_on import UserAddOnGrant
from jobcredits.schemas.billing import AddOnGrantResponse, CreditUnitResponse
from jobcredits.services.credits_engine import list_credit_units
from jobcredits.services.reporting import user_ledger_summary


router = APIRouter()


@router.get("/credits")
async def get_credits(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    return user_ledger_summary(db, user.id)


@router.get("/credits/units", response_model=List[CreditUnitResponse])
async def get_credit_units(
    include_used: bool = False,
    limit: int = 200,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    limit = max(1, min(int(limit or 200), 500))
    return list_credit_units(db, user.id, include_used=include_used, limit=limit)


@router.get("/credits/addons", response_model=List[AddOnGrantResponse])
async def get_add_on_grants(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return (
        db.query(UserAddOnGrant)
        .options(selectinload(UserAddOnGrant.applications))
        .filter(UserAddOnGrant.user_id == user.id)
        .order_by(UserAddOnGrant.purchased_at.desc())
        .all()
    )
