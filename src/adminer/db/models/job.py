"""
Job model
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base


class JobStatus(str, enum.Enum):
    """Job status enum"""
    PENDING = "pending"
    QUEUED = "queued"
    COMPLETED = "completed"
    FAILED = "failed"


NON_TERMINAL_JOB_STATUSES = (JobStatus.PENDING.value, JobStatus.QUEUED.value)


class Job(Base):
    """Scraping job admitted against an organization's quota"""
    __tablename__ = "jobs"

    id = Column(String(64), primary_key=True)
    org_id = Column(String(64), ForeignKey("organizations.id"), nullable=False, index=True)
    keyword = Column(String(200), nullable=False)
    ads_requested = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default=JobStatus.PENDING.value, index=True)
    quota_debit = Column(Integer, nullable=False, default=1)
    period = Column(String(7), nullable=False)  # Billing period the debit was charged to
    worker_run_id = Column(String(128), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_jobs_org_id_created_at", "org_id", "created_at"),
    )

    # Relationships
    organization = relationship("Organization", back_populates="jobs")
