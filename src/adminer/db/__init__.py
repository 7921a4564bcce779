"""
Database module for the adminer job admission service
"""
from .engine import engine, SessionLocal, get_db, init_db
from .base import Base
from .models import (
    Plan,
    Organization,
    BillingStatus,
    UsageCounter,
    WebhookEvent,
    DispatchStatus,
    Job,
    JobStatus,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
    "Base",
    "Plan",
    "Organization",
    "BillingStatus",
    "UsageCounter",
    "WebhookEvent",
    "DispatchStatus",
    "Job",
    "JobStatus",
]
