import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from jobcredits.core.database import Base


class CreditType(str, enum.Enum):
    JOB_POST = "job_post"
    FEATURED_POST = "featured_post"
    SOCIAL_GRAPHIC = "social_graphic"
    # Reserved type with no catalog pack or gate that spends it; reposts spend JOB_POST.
    REPOST = "repost"


class CreditUnit(Base):
    __tablename__ = "credit_units"
    __table_args__ = (
        Index("ix_credit_units_eligible", "user_id", "credit_type", "is_used", "expires_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    credit_type = Column(Enum(CreditType), nullable=False)
    purchase_id = Column(Integer, ForeignKey("purchases.id"), index=True, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_for_job_id = Column(Integer, index=True, nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    purchase = relationship("Purchase", back_populates="credit_units")
