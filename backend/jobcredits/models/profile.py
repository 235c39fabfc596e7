from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from jobcredits.core.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, index=True)
    company_name = Column(String, nullable=True)
    role = Column(String, index=True, default="employer")
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
