"""Credit-gated job operations: publish, repost, feature, add-on apply.

Every gate runs its eligibility checks, the credit (or grant) spend and the
job mutation in one transaction. Any failure rolls back all of it, so a unit
is never left used without its effect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from jobcredits.core.errors import (
    AddonAlreadyApplied,
    GrantUnavailable,
    InsufficientCredits,
    InvalidJobDraft,
    JobNotActive,
    JobNotFound,
    JobStillActive,
    OwnershipMismatch,
)
from jobcredits.core.settings import settings
from jobcredits.models.add_on import AddOnApplication, UserAddOnGrant
from jobcredits.models.credit_unit import CreditType
from jobcredits.models.job import Job, JobStatus
from jobcredits.services import catalog
from jobcredits.services.credits_engine import as_utc, try_consume_credit, utcnow
from jobcredits.services.work_queue import enqueue_social_post


logger = logging.getLogger(__name__)

REQUIRED_DRAFT_FIELDS = ("title", "company", "location")
MIN_DESCRIPTION_LENGTH = 50


@dataclass
class FeatureResult:
    job: Job
    newly_featured: bool
    credit_unit_id: int | None = None


def _get_owned_job(db: Session, user_id: str, job_id: int) -> Job:
    job = db.query(Job).filter(Job.id == int(job_id)).first()
    if job is None:
        raise JobNotFound()
    if job.employer_id != user_id:
        raise OwnershipMismatch("You do not own this job")
    return job


def is_live(job: Job, now: datetime) -> bool:
    # Expiry is evaluated lazily: an "active" row past its expires_at is expired.
    expires_at = as_utc(job.expires_at)
    return job.status == JobStatus.ACTIVE and (expires_at is None or expires_at > now)


def repost_window(job: Job) -> timedelta:
    days = settings.repost_days_free if job.is_free_listing else settings.repost_days_paid
    return timedelta(days=int(days))


def _is_journal_conflict(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", exc) or "")
    return "uq_add_on_applications_grant_job" in message or "add_on_applications.grant_id" in message


def clean_draft(draft: Mapping[str, Any]) -> dict[str, Any]:
    """Strip the listing's text fields and reject a draft that cannot be published.

    Runs before any credit is touched, so a rejected draft costs nothing.
    """
    cleaned = dict(draft)
    for field in ("title", "company", "location", "description"):
        cleaned[field] = str(draft.get(field) or "").strip()
    missing = [f for f in REQUIRED_DRAFT_FIELDS if not cleaned[f]]
    if missing:
        raise InvalidJobDraft(f"Missing required fields: {', '.join(missing)}")
    if len(cleaned["description"]) < MIN_DESCRIPTION_LENGTH:
        raise InvalidJobDraft(f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters")
    return cleaned


def _build_job(user_id: str, draft: Mapping[str, Any], now: datetime) -> Job:
    return Job(
        employer_id=user_id,
        title=draft["title"],
        company=draft["company"],
        description=draft["description"],
        location=draft["location"],
        job_type=draft.get("job_type") or "full_time",
        source=draft.get("source") or "job_post",
        status=JobStatus.ACTIVE,
        posted_at=now,
        expires_at=now + timedelta(days=int(settings.listing_days)),
    )


def publish_job(db: Session, user_id: str, draft: Mapping[str, Any], now: datetime | None = None) -> Job:
    now = now or utcnow()
    cleaned = clean_draft(draft)
    try:
        unit = try_consume_credit(db, user_id, CreditType.JOB_POST, now=now)
        if unit is None:
            raise InsufficientCredits("Job posting credits required to publish job posts", credit_type=CreditType.JOB_POST.value)
        job = _build_job(user_id, cleaned, now)
        db.add(job)
        db.flush()
        unit.used_for_job_id = job.id
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(job)
    logger.info("gates.publish.ok user_id=%s job_id=%s unit_id=%s", user_id, job.id, unit.id)
    return job


def repost_job(db: Session, user_id: str, job_id: int, now: datetime | None = None) -> Job:
    now = now or utcnow()
    try:
        job = _get_owned_job(db, user_id, job_id)
        if is_live(job, now):
            raise JobStillActive()
        unit = try_consume_credit(db, user_id, CreditType.JOB_POST, used_for_job_id=job.id, now=now)
        if unit is None:
            raise InsufficientCredits("A job posting credit is required to repost", credit_type=CreditType.JOB_POST.value)
        base = max(now, as_utc(job.expires_at) or now)
        job.expires_at = base + repost_window(job)
        job.status = JobStatus.ACTIVE
        job.repost_count = int(job.repost_count or 0) + 1
        job.last_reposted_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(job)
    logger.info(
        "gates.repost.ok user_id=%s job_id=%s unit_id=%s expires_at=%s",
        user_id,
        job.id,
        unit.id,
        as_utc(job.expires_at).isoformat(),
    )
    return job


def feature_job(db: Session, user_id: str, job_id: int, now: datetime | None = None) -> FeatureResult:
    """Feature an active job. Re-featuring is a no-op that spends nothing.

    Callers queue follow-up work only when ``newly_featured`` is true, after
    this returns; that work is not part of the credit transaction.
    """
    now = now or utcnow()
    try:
        job = _get_owned_job(db, user_id, job_id)
        if not is_live(job, now):
            raise JobNotActive()
        if job.is_featured:
            db.rollback()
            return FeatureResult(job=job, newly_featured=False)
        unit = try_consume_credit(db, user_id, CreditType.FEATURED_POST, used_for_job_id=job.id, now=now)
        if unit is None:
            raise InsufficientCredits("A featured post credit is required", credit_type=CreditType.FEATURED_POST.value)
        job.is_featured = True
        job.featured_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(job)
    logger.info("gates.feature.ok user_id=%s job_id=%s unit_id=%s", user_id, job.id, unit.id)
    return FeatureResult(job=job, newly_featured=True, credit_unit_id=unit.id)


def apply_add_on(db: Session, user_id: str, grant_id: int, job_id: int, now: datetime | None = None) -> AddOnApplication:
    now = now or utcnow()
    try:
        grant = db.query(UserAddOnGrant).filter(UserAddOnGrant.id == int(grant_id)).first()
        if grant is None:
            raise GrantUnavailable("Add-on grant not found")
        if grant.user_id != user_id:
            raise OwnershipMismatch("You do not own this add-on")
        expires_at = as_utc(grant.expires_at)
        if not grant.is_active or (expires_at is not None and expires_at <= now):
            raise GrantUnavailable()
        job = _get_owned_job(db, user_id, job_id)

        already = (
            db.query(AddOnApplication)
            .filter(AddOnApplication.grant_id == grant.id, AddOnApplication.job_id == job.id)
            .first()
        )
        if already is not None:
            raise AddonAlreadyApplied()

        effect = catalog.get_add_on(grant.add_on_key).effect
        if effect.featured and not job.is_featured:
            job.is_featured = True
            job.featured_at = now
        if effect.placement_bump:
            job.placement_bump = True
        if effect.pinned:
            job.is_pinned = True
        if effect.social_push:
            job.social_media_shoutout = True
            enqueue_social_post(db, job, source=f"add_on:{grant.id}")

        application = AddOnApplication(grant_id=grant.id, job_id=job.id, applied_at=now)
        db.add(application)
        db.flush()
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        # A concurrent apply of the same grant to the same job won the unique constraint.
        if _is_journal_conflict(exc):
            raise AddonAlreadyApplied()
        raise
    except Exception:
        db.rollback()
        raise
    db.refresh(application)
    logger.info("gates.add_on.ok user_id=%s grant_id=%s job_id=%s", user_id, grant_id, job_id)
    return application
