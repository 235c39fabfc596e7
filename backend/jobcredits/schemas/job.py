from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime

from jobcredits.models.job import JobStatus
from jobcredits.services.job_gates import MIN_DESCRIPTION_LENGTH


class JobCreate(BaseModel):
    title: str = Field(max_length=200)
    company: str = Field(max_length=200)
    location: str = Field(max_length=200)
    description: str
    job_type: str = "full_time"
    source: str = "job_post"

    @field_validator("title", "company", "location")
    @classmethod
    def strip_required(cls, value: str, info) -> str:
        value = value.strip()
        if not value:
            raise ValueError(f"{info.field_name} is required")
        return value

    @field_validator("description")
    @classmethod
    def check_description_length(cls, value: str) -> str:
        value = value.strip()
        if len(value) < MIN_DESCRIPTION_LENGTH:
            raise ValueError(f"description must be at least {MIN_DESCRIPTION_LENGTH} characters")
        return value


class JobResponse(BaseModel):
    id: int
    employer_id: str
    title: str
    company: str
    description: Optional[str] = None
    location: Optional[str] = None
    job_type: Optional[str] = None
    source: Optional[str] = None
    status: JobStatus
    posted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_featured: bool = False
    featured_at: Optional[datetime] = None
    placement_bump: bool = False
    is_pinned: bool = False
    social_media_shoutout: bool = False
    upsell_bundle: bool = False
    repost_count: int = 0
    last_reposted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FeatureResponse(BaseModel):
    job: JobResponse
    newly_featured: bool
    credit_unit_id: Optional[int] = None


class AddOnApplicationResponse(BaseModel):
    id: int
    grant_id: int
    job_id: int
    applied_at: Optional[datetime] = None

    class Config:
        from_attributes = True
