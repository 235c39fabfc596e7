from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from jobcredits.core.database import Base


class UserAddOnGrant(Base):
    __tablename__ = "user_add_on_grants"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    add_on_key = Column(String, index=True, nullable=False)
    purchase_id = Column(Integer, ForeignKey("purchases.id"), unique=True, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    price_paid_cents = Column(Integer, nullable=False, default=0)
    purchased_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    applications = relationship(
        "AddOnApplication",
        back_populates="grant",
        order_by="AddOnApplication.applied_at",
    )

    @property
    def applied_job_ids(self) -> list[int]:
        return [a.job_id for a in self.applications]


class AddOnApplication(Base):
    """One entry of a grant's usage journal."""

    __tablename__ = "add_on_applications"
    __table_args__ = (UniqueConstraint("grant_id", "job_id", name="uq_add_on_applications_grant_job"),)

    id = Column(Integer, primary_key=True, index=True)
    grant_id = Column(Integer, ForeignKey("user_add_on_grants.id"), index=True, nullable=False)
    job_id = Column(Integer, ForeignKey("jobs.id"), index=True, nullable=False)
    applied_at = Column(DateTime(timezone=True), nullable=False)

    grant = relationship("UserAddOnGrant", back_populates="applications")
