"""
Usage counter model
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from ..base import Base


class UsageCounter(Base):
    """Jobs admitted per organization and billing period"""
    __tablename__ = "usage_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(String(64), ForeignKey("organizations.id"), nullable=False, index=True)
    period = Column(String(7), nullable=False, index=True)  # Format: "YYYY-MM" (UTC)
    used = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "period", name="uq_usage_counters_org_period"),
    )

    # Relationships
    organization = relationship("Organization", back_populates="usage_counters")
