"""
Admission Controller - the synchronous path of a job-creation request

Resolve organization -> debit quota -> create Job -> submit to worker.
Quota and authentication outcomes are returned as decisions, not raised.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import enum
import logging
import uuid

from ..db.models import Job, JobStatus
from ..exceptions import TransientStoreError, WorkerSubmissionError
from .metrics import AdmissionMetrics
from .organization_service import OrganizationService
from .plan_catalog import PlanCatalog
from .usage_ledger import UsageLedger, period_for
from .worker_client import WorkerClient, WorkerClientError

logger = logging.getLogger(__name__)

jobs = Job.__table__


class AdmissionOutcome(str, enum.Enum):
    ADMITTED = "admitted"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNAUTHENTICATED = "unauthenticated"


@dataclass
class AdmissionDecision:
    outcome: AdmissionOutcome
    org_id: Optional[str] = None
    plan: Optional[str] = None
    period: Optional[str] = None
    used: int = 0
    limit: int = 0
    job: Optional[Job] = None
    upgrade_url: Optional[str] = None

    @property
    def admitted(self) -> bool:
        return self.outcome == AdmissionOutcome.ADMITTED


class AdmissionController:
    """Admits or rejects job requests against the monthly quota"""

    JOB_COST = 1

    def __init__(self, db: Session, catalog: PlanCatalog, worker_client: WorkerClient):
        """
        Initialize AdmissionController

        Args:
            db: Database session
            catalog: Plan reference data
            worker_client: External worker platform client
        """
        self.db = db
        self.catalog = catalog
        self.worker_client = worker_client
        self.ledger = UsageLedger(db)
        self.organizations = OrganizationService(db, catalog)

    def admit(self, org_id: Optional[str], keyword: str, ads_requested: int, now: Optional[datetime] = None) -> AdmissionDecision:
        """
        Run the admission state machine for one job request

        Args:
            org_id: Trusted organization id from the authentication layer
            keyword: Search keyword for the scraping job
            ads_requested: Number of ads requested (already bounded by the caller)
            now: Override for the current time (naive UTC)

        Returns:
            AdmissionDecision

        Raises:
            TransientStoreError: Store unavailable; safe for the caller to retry
            WorkerSubmissionError: Quota was debited but the worker did not accept the job
        """
        try:
            org = self.organizations.get(org_id)
        except SQLAlchemyError as e:
            logger.error(f"Organization lookup failed for {org_id}: {e}")
            AdmissionMetrics.record_outcome("error")
            raise TransientStoreError() from e

        if org is None:
            logger.info(f"Admission refused: unknown organization {org_id!r}")
            AdmissionMetrics.record_outcome("unauthenticated")
            return AdmissionDecision(outcome=AdmissionOutcome.UNAUTHENTICATED, org_id=org_id)

        plan_code = org.plan_code
        limit = self.catalog.effective_limit(org)
        period = period_for(now)

        try:
            debit = self.ledger.try_debit(org.id, period, self.JOB_COST)
        except SQLAlchemyError as e:
            logger.error(f"Quota debit failed for org {org_id} period {period}: {e}")
            AdmissionMetrics.record_outcome("error")
            raise TransientStoreError() from e

        if not debit.admitted:
            upgrade_url = self.catalog.upgrade_url(plan_code)
            logger.info(f"Quota exceeded for org {org_id} ({plan_code}): used={debit.used} limit={limit}")
            AdmissionMetrics.record_outcome("quota_exceeded")
            return AdmissionDecision(
                outcome=AdmissionOutcome.QUOTA_EXCEEDED,
                org_id=org_id,
                plan=plan_code,
                period=period,
                used=debit.used,
                limit=limit,
                upgrade_url=upgrade_url,
            )

        job = self._create_job(org_id, keyword, ads_requested, period)
        self._submit(job)

        AdmissionMetrics.record_outcome("admitted")
        return AdmissionDecision(
            outcome=AdmissionOutcome.ADMITTED,
            org_id=org_id,
            plan=plan_code,
            period=period,
            used=debit.used,
            limit=limit,
            job=job,
        )

    def _create_job(self, org_id: str, keyword: str, ads_requested: int, period: str) -> Job:
        now = datetime.utcnow()
        job = Job(
            id=str(uuid.uuid4()),
            org_id=org_id,
            keyword=keyword,
            ads_requested=ads_requested,
            status=JobStatus.PENDING.value,
            quota_debit=self.JOB_COST,
            period=period,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(job)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            # The debit stays applied; see DESIGN.md on refunds
            logger.error(f"Job row creation failed for org {org_id} after debit: {e}")
            AdmissionMetrics.record_outcome("error")
            raise TransientStoreError() from e
        return job

    def _submit(self, job: Job) -> None:
        try:
            run_id = self.worker_client.submit(job)
        except WorkerClientError as e:
            logger.error(f"Job {job.id} for org {job.org_id} failed submission: {e}")
            self._transition(job.id, JobStatus.FAILED, error=str(e)[:2000])
            AdmissionMetrics.record_outcome("error")
            raise WorkerSubmissionError(
                "Job could not be submitted to the worker platform",
                details={"job_id": job.id, "retryable": True},
            ) from e

        self._transition(job.id, JobStatus.QUEUED, worker_run_id=run_id)
        self.db.refresh(job)

    def _transition(self, job_id: str, status: JobStatus, **values) -> None:
        """Move a pending job forward; a completion webhook may already have won"""
        now = datetime.utcnow()
        if status == JobStatus.FAILED:
            values["completed_at"] = now
        try:
            self.db.execute(
                update(jobs)
                .where(jobs.c.id == job_id, jobs.c.status == JobStatus.PENDING.value)
                .values(status=status.value, updated_at=now, **values)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not move job {job_id} to {status.value}: {e}")
            raise TransientStoreError() from e
