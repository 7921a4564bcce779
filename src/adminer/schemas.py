"""
Request and response schemas for the HTTP API
"""
from datetime import datetime, timezone
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator, ConfigDict

from .config import config


class JobCreateRequest(BaseModel):
    """Request to create a scraping job"""
    keyword: str = Field(..., min_length=1, max_length=200, description="Search keyword")
    limit: int = Field(..., ge=1, description="Maximum number of ads to collect")

    @field_validator("keyword")
    @classmethod
    def keyword_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("keyword must not be blank")
        return v

    @field_validator("limit")
    @classmethod
    def limit_within_bound(cls, v: int) -> int:
        if v > config.JOB_MAX_ADS:
            raise ValueError(f"limit must be at most {config.JOB_MAX_ADS}")
        return v


class JobAcceptedResponse(BaseModel):
    """Job accepted for asynchronous processing"""
    job_id: str
    status: str
    period: str
    used: int
    limit: int


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    keyword: str
    ads_requested: int
    status: str
    quota_debit: int
    period: str
    worker_run_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class JobListResponse(BaseModel):
    jobs: List[JobResponse]


class QuotaStatusResponse(BaseModel):
    """Quota usage for the current billing period"""
    plan: str
    plan_name: str
    used: int
    limit: int
    remaining: int
    period: str
    reset_at: datetime
    billing_status: str
    upgrade_url: str

    @field_validator("reset_at")
    @classmethod
    def reset_at_is_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class BootstrapFreeRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)


class BootstrapFreeResponse(BaseModel):
    org_id: str
    plan: str
    created: bool


class WebhookEventSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    source: str
    event_type: str
    received_at: datetime
    dispatch_status: str
    dispatched_at: Optional[datetime] = None
    dispatch_error: Optional[str] = None
    payload: str


class WebhookEventPage(BaseModel):
    items: List[WebhookEventSummary]
    next_cursor: Optional[str] = None
