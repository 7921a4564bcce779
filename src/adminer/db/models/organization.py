"""
Organization model
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base


class BillingStatus(str, enum.Enum):
    """Billing status enum"""
    INACTIVE = "inactive"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    CANCELED_DOWNGRADED = "canceled_downgraded"


class Organization(Base):
    """Tenant organization with plan and billing state"""
    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True)  # Stable external id
    name = Column(String(255), nullable=True)
    plan_code = Column(String(32), ForeignKey("plans.code"), nullable=False, default="free", index=True)
    quota_limit = Column(Integer, nullable=True)  # Overrides plan monthly quota when set
    billing_status = Column(String(64), nullable=False, default=BillingStatus.INACTIVE.value, index=True)
    provider_customer_id = Column(String(128), nullable=True, index=True)
    provider_subscription_id = Column(String(128), nullable=True, index=True)
    current_period_end = Column(DateTime, nullable=True, index=True)
    canceled_at = Column(DateTime, nullable=True)
    last_billing_event_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)  # Optimistic concurrency token
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    plan = relationship("Plan")
    usage_counters = relationship("UsageCounter", back_populates="organization")
    jobs = relationship("Job", back_populates="organization")
