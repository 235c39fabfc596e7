from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from jobcredits.core.database import Base


class PromotionTask(Base):
    __tablename__ = "promotion_tasks"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), index=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
    kind = Column(String, index=True, nullable=False)  # social_post, featured_job_followup
    source = Column(String, nullable=True)
    status = Column(String, index=True, default="queued")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
