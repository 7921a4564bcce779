"""
Job API routes - admission of scraping jobs and quota status
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from .auth import get_current_org_id
from .config import config
from .db.engine import get_db
from .db.models import Job
from .exceptions import QuotaExceeded, TransientStoreError, Unauthenticated, error_json
from .schemas import (
    JobCreateRequest,
    JobAcceptedResponse,
    JobResponse,
    JobListResponse,
    QuotaStatusResponse,
)
from .services.admission_controller import AdmissionController, AdmissionOutcome
from .services.plan_catalog import PlanCatalog, get_plan_catalog
from .services.quota_service import QuotaService
from .services.worker_client import WorkerClient, get_worker_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["jobs"])


def get_worker() -> WorkerClient:
    """Worker client dependency"""
    return get_worker_client(config)


@router.post("/jobs", status_code=status.HTTP_202_ACCEPTED, response_model=JobAcceptedResponse)
def create_job(
    request: JobCreateRequest,
    org_id: str = Depends(get_current_org_id),
    db: Session = Depends(get_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
    worker: WorkerClient = Depends(get_worker),
):
    """
    Admit a scraping job against the organization's monthly quota

    Responses:
    - 202 with the job reference when admitted
    - 402 QUOTA_EXCEEDED with an upgrade URL when the quota is used up
    - 401 when the organization is unknown
    - 503 when storage or the worker platform is unavailable
    """
    decision = AdmissionController(db, catalog, worker).admit(org_id, request.keyword, request.limit)

    if decision.outcome == AdmissionOutcome.UNAUTHENTICATED:
        return error_json(Unauthenticated("Unknown organization"))

    if decision.outcome == AdmissionOutcome.QUOTA_EXCEEDED:
        return error_json(QuotaExceeded(
            plan=decision.plan,
            used=decision.used,
            limit=decision.limit,
            upgrade_url=decision.upgrade_url,
        ))

    return JobAcceptedResponse(
        job_id=decision.job.id,
        status=decision.job.status,
        period=decision.period,
        used=decision.used,
        limit=decision.limit,
    )


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    org_id: str = Depends(get_current_org_id),
    db: Session = Depends(get_db),
):
    """List the organization's jobs, newest first"""
    try:
        rows = db.execute(
            select(Job)
            .where(Job.org_id == org_id)
            .order_by(Job.created_at.desc(), Job.id.desc())
            .limit(limit)
        ).scalars().all()
    except SQLAlchemyError as e:
        logger.error(f"Job listing failed for org {org_id}: {e}")
        raise TransientStoreError() from e
    return JobListResponse(jobs=[JobResponse.model_validate(job) for job in rows])


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(
    job_id: str,
    org_id: str = Depends(get_current_org_id),
    db: Session = Depends(get_db),
):
    """Get one of the organization's jobs"""
    job = db.get(Job, job_id)
    if job is None or job.org_id != org_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobResponse.model_validate(job)


@router.get("/quota", response_model=QuotaStatusResponse)
def get_quota(
    org_id: str = Depends(get_current_org_id),
    db: Session = Depends(get_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Plan, usage and reset date for the current billing period"""
    try:
        quota = QuotaService(db, catalog).get_status(org_id)
    except SQLAlchemyError as e:
        logger.error(f"Quota lookup failed for org {org_id}: {e}")
        raise TransientStoreError() from e
    if quota is None:
        raise Unauthenticated("Unknown organization")
    return quota
