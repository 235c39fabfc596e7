from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from jobcredits.core.database import Base


ACTIVE_SUBSCRIPTION_STATUSES = {"active", "trial", "trialing"}


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, unique=True)
    tier = Column(String, index=True, nullable=True)
    status = Column(String, index=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    stripe_customer_id = Column(String, index=True, nullable=True)
    stripe_subscription_id = Column(String, index=True, unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
