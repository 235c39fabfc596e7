import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.sql import func

from jobcredits.core.database import Base


class UpsellStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class UpsellPurchase(Base):
    __tablename__ = "upsell_purchases"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    job_id = Column(Integer, ForeignKey("jobs.id"), index=True, nullable=False)
    external_session_id = Column(String, unique=True, index=True, nullable=False)
    social_media_shoutout = Column(Boolean, nullable=False, default=False)
    placement_bump = Column(Boolean, nullable=False, default=False)
    upsell_bundle = Column(Boolean, nullable=False, default=False)
    total_amount_cents = Column(Integer, nullable=False, default=0)
    status = Column(Enum(UpsellStatus), index=True, nullable=False, default=UpsellStatus.PENDING)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    purchase_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
