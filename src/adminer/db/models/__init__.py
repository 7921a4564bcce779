"""
Database models for the adminer job admission service
"""
from .plan import Plan
from .organization import Organization, BillingStatus
from .usage import UsageCounter
from .webhook_event import WebhookEvent, DispatchStatus
from .job import Job, JobStatus, NON_TERMINAL_JOB_STATUSES

__all__ = [
    "Plan",
    "Organization",
    "BillingStatus",
    "UsageCounter",
    "WebhookEvent",
    "DispatchStatus",
    "Job",
    "JobStatus",
    "NON_TERMINAL_JOB_STATUSES",
]
