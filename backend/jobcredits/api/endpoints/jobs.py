from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from jobcredits.core.database import get_db
from jobcredits.core.errors import JobNotFound, OwnershipMismatch
from jobcredits.core.security import CurrentUser, get_current_user, require_employer
from jobcredits.models.job import Job
from jobcredits.schemas.job import AddOnApplicationResponse, FeatureResponse, JobCreate, JobResponse
from jobcredits.services.job_gates import apply_add_on, feature_job, publish_job, repost_job
from jobcredits.services.work_queue import queue_featured_job_followup


router = APIRouter()


@router.post("/jobs", response_model=JobResponse)
async def create_job(job_in: JobCreate, user: CurrentUser = Depends(require_employer), db: Session = Depends(get_db)):
    return publish_job(db, user.id, job_in.model_dump())


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: int, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    job = db.query(Job).filter(Job.id == job_id).first()
    if job is None:
        raise JobNotFound()
    if job.employer_id != user.id and not user.is_admin:
        raise OwnershipMismatch("You do not own this job")
    return job


@router.post("/jobs/{job_id}/repost", response_model=JobResponse)
async def repost(job_id: int, user: CurrentUser = Depends(require_employer), db: Session = Depends(get_db)):
    return repost_job(db, user.id, job_id)


@router.post("/jobs/{job_id}/feature", response_model=FeatureResponse)
async def feature(
    job_id: int,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(require_employer),
    db: Session = Depends(get_db),
):
    result = feature_job(db, user.id, job_id)
    if result.newly_featured:
        background_tasks.add_task(queue_featured_job_followup, result.job.id)
    return FeatureResponse(
        job=JobResponse.model_validate(result.job),
        newly_featured=result.newly_featured,
        credit_unit_id=result.credit_unit_id,
    )


@router.post("/jobs/{job_id}/addons/{grant_id}", response_model=AddOnApplicationResponse)
async def apply_job_add_on(
    job_id: int,
    grant_id: int,
    user: CurrentUser = Depends(require_employer),
    db: Session = Depends(get_db),
):
    return apply_add_on(db, user.id, grant_id, job_id)
