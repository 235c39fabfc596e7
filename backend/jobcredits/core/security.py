from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from jobcredits.core.database import get_db
from jobcredits.core.settings import settings
from jobcredits.models.profile import Profile


EMPLOYER_ROLE = "employer"
ADMIN_ROLE = "admin"

PRESENCE_REFRESH_S = 600


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == ADMIN_ROLE


def _normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def _is_admin_email(email: str) -> bool:
    normalized = _normalize_email(email)
    if not normalized:
        return False
    return normalized in (settings.admin_emails or set())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decode_jwt(token: str) -> dict[str, Any]:
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="JWT_SECRET is not configured")
    options: dict[str, Any] = {"require": ["exp", "sub"]}
    if not settings.jwt_audience:
        options["verify_aud"] = False
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        return dict(payload)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def _decide_role(*, email_is_admin: bool, claim_is_admin: bool, db_role: str | None) -> tuple[str, str]:
    dbr = str(db_role or "").strip().lower()
    if dbr == ADMIN_ROLE:
        return (ADMIN_ROLE, "db_profile")
    if email_is_admin:
        return (ADMIN_ROLE, "admin_emails")
    if claim_is_admin:
        return (ADMIN_ROLE, "jwt_claim")
    if dbr:
        return (dbr, "db_profile")
    return (EMPLOYER_ROLE, "default")


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def _claims_admin(claims: dict[str, Any]) -> bool:
    app_meta = claims.get("app_metadata") or {}
    if not isinstance(app_meta, dict):
        app_meta = {}
    claimed_role = str(app_meta.get("role") or "").strip().lower()
    top_level_role = str(claims.get("role") or "").strip().lower()
    return claimed_role == ADMIN_ROLE or top_level_role == ADMIN_ROLE


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    token = _get_bearer_token(request)
    claims = _decode_jwt(token)
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("email") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_meta = claims.get("user_metadata") or {}
    if not isinstance(user_meta, dict):
        user_meta = {}
    company_name = str(user_meta.get("company_name") or user_meta.get("company") or "").strip()

    email_is_admin = _is_admin_email(email)
    claim_is_admin = _claims_admin(claims)
    seen_at = _utcnow()

    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if profile is None:
        role, _reason = _decide_role(email_is_admin=email_is_admin, claim_is_admin=claim_is_admin, db_role=None)
        profile = Profile(
            id=user_id,
            email=email,
            company_name=company_name or None,
            role=role,
            last_seen_at=seen_at,
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
    else:
        changed = False
        next_role, _reason = _decide_role(
            email_is_admin=email_is_admin,
            claim_is_admin=claim_is_admin,
            db_role=profile.role,
        )
        if (profile.role or "").strip().lower() != next_role:
            profile.role = next_role
            changed = True
        if email and (profile.email or "") != email:
            profile.email = email
            changed = True
        if company_name and (profile.company_name or "") != company_name:
            profile.company_name = company_name
            changed = True
        prev_seen = profile.last_seen_at
        if prev_seen is not None and prev_seen.tzinfo is None:
            prev_seen = prev_seen.replace(tzinfo=timezone.utc)
        if prev_seen is None or (seen_at - prev_seen).total_seconds() >= PRESENCE_REFRESH_S:
            profile.last_seen_at = seen_at
            changed = True
        if changed:
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise

    return CurrentUser(id=profile.id, email=profile.email or "", role=profile.role or EMPLOYER_ROLE)


def require_employer(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    # Admins may act on behalf of the marketplace, so they pass the employer gate too.
    if (user.role or "").lower() not in {EMPLOYER_ROLE, ADMIN_ROLE}:
        raise HTTPException(status_code=403, detail="Employer access required")
    return user


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
