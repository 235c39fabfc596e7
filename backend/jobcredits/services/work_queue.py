from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from jobcredits.core.database import SessionLocal
from jobcredits.models.job import Job
from jobcredits.models.promotion_task import PromotionTask


logger = logging.getLogger(__name__)

SOCIAL_POST = "social_post"
FEATURED_JOB_FOLLOWUP = "featured_job_followup"


def enqueue_social_post(db: Session, job: Job, source: str) -> PromotionTask:
    """Queue a promotional post inside the caller's transaction.

    The row only becomes visible if the caller commits, so a post is never
    queued for a credit or grant that was rolled back.
    """
    task = PromotionTask(job_id=job.id, user_id=job.employer_id, kind=SOCIAL_POST, source=source, status="queued")
    db.add(task)
    logger.info("work_queue.enqueue kind=%s job_id=%s source=%s", SOCIAL_POST, job.id, source)
    return task


def queue_featured_job_followup(job_id: int, session_factory: Callable[[], Session] | None = None) -> None:
    # Runs as a background task after the feature gate committed; never raises.
    db = (session_factory or SessionLocal)()
    try:
        job = db.query(Job).filter(Job.id == job_id).first()
        if job is None:
            logger.warning("work_queue.featured_followup.missing_job job_id=%s", job_id)
            return
        db.add(PromotionTask(job_id=job.id, user_id=job.employer_id, kind=FEATURED_JOB_FOLLOWUP, source="feature"))
        db.commit()
        logger.info("work_queue.enqueue kind=%s job_id=%s", FEATURED_JOB_FOLLOWUP, job_id)
    except Exception:
        db.rollback()
        logger.exception("work_queue.featured_followup.error job_id=%s", job_id)
    finally:
        db.close()
