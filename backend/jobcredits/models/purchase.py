import enum

from sqlalchemy import JSON, Column, DateTime, Enum, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from jobcredits.core.database import Base


class PurchaseStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PurchaseKind(str, enum.Enum):
    TIER = "tier"
    CREDIT_PACK = "credit_pack"
    ADDON = "addon"
    ADMIN_GRANT = "admin_grant"


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    kind = Column(Enum(PurchaseKind), nullable=False)
    # pack key for tier/credit_pack, add-on key for addon
    selection_key = Column(String, index=True, nullable=True)
    add_on_keys = Column(JSON, nullable=True)
    external_session_id = Column(String, unique=True, index=True, nullable=False)
    status = Column(Enum(PurchaseStatus), index=True, nullable=False, default=PurchaseStatus.PENDING)

    job_post_credits = Column(Integer, nullable=False, default=0)
    featured_post_credits = Column(Integer, nullable=False, default=0)
    social_graphic_credits = Column(Integer, nullable=False, default=0)
    # Always 0 today; see CreditType.REPOST.
    repost_credits = Column(Integer, nullable=False, default=0)

    total_amount_cents = Column(Integer, nullable=False, default=0)
    expiration_days = Column(Integer, nullable=False, default=30)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    purchase_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    credit_units = relationship("CreditUnit", back_populates="purchase")

    def credit_counts(self) -> dict[str, int]:
        return {
            "job_post": int(self.job_post_credits or 0),
            "featured_post": int(self.featured_post_credits or 0),
            "social_graphic": int(self.social_graphic_credits or 0),
            "repost": int(self.repost_credits or 0),
        }
