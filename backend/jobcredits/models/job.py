from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.sql import func
from jobcredits.core.database import Base
import enum


class JobStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"
    EXPIRED = "expired"


# Listings created through the free basic flow get a shorter repost window.
FREE_JOB_SOURCES = {"free_basic_post", "free_trial"}


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    employer_id = Column(String, index=True, nullable=False)
    title = Column(String, nullable=False)
    company = Column(String, nullable=False)
    description = Column(Text)
    location = Column(String)
    job_type = Column(String, default="full_time")
    source = Column(String, index=True, default="job_post")
    status = Column(Enum(JobStatus), index=True, default=JobStatus.ACTIVE)
    posted_at = Column(DateTime(timezone=True))
    expires_at = Column(DateTime(timezone=True))

    # Promotional flags
    is_featured = Column(Boolean, default=False)
    featured_at = Column(DateTime(timezone=True), nullable=True)
    placement_bump = Column(Boolean, default=False)
    is_pinned = Column(Boolean, default=False)
    social_media_shoutout = Column(Boolean, default=False)
    upsell_bundle = Column(Boolean, default=False)

    repost_count = Column(Integer, default=0)
    last_reposted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_free_listing(self) -> bool:
        return (self.source or "") in FREE_JOB_SOURCES
