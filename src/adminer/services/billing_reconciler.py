"""
Billing State Reconciler - downgrades organizations whose subscription has lapsed

Each candidate is downgraded with a compare-and-swap on the version read
during the candidate query, in its own transaction, so one organization's
failure or concurrent renewal never affects the rest of the sweep.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict
from sqlalchemy import select, or_, and_, text
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from sqlalchemy.orm import Session
import logging
import time

from ..db.engine import is_postgres
from ..db.models import Organization, BillingStatus
from .metrics import ReconcilerMetrics
from .organization_service import OrganizationService
from .plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)

TERMINAL_BILLING_STATUSES = (
    BillingStatus.CANCELED.value,
    BillingStatus.INCOMPLETE_EXPIRED.value,
)

# PostgreSQL SQLSTATE for query_canceled (statement_timeout)
QUERY_CANCELED = "57014"


@dataclass
class Candidate:
    org_id: str
    version: int
    plan_code: str
    billing_status: str


@dataclass
class ReconcileResult:
    candidates: int = 0
    downgraded: int = 0
    dry_run: bool = False
    skipped: Dict[str, int] = field(default_factory=lambda: {"conflict": 0, "timeout": 0, "error": 0})
    candidate_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"downgraded": self.downgraded, "candidates": self.candidates, "dryRun": self.dry_run}


class CandidateTimeout(Exception):
    """A candidate's downgrade exceeded its time bound"""
    pass


class BillingReconciler:
    """Scheduled sweep that moves lapsed organizations to the free plan"""

    def __init__(self, db: Session, catalog: PlanCatalog, candidate_timeout: float = 5.0):
        """
        Initialize BillingReconciler

        Args:
            db: Database session
            catalog: Plan reference data
            candidate_timeout: Per-candidate time bound in seconds
        """
        self.db = db
        self.catalog = catalog
        self.candidate_timeout = candidate_timeout
        self.organizations = OrganizationService(db, catalog)

    def find_candidates(self, now: datetime) -> List[Candidate]:
        """
        Organizations eligible for downgrade at ``now``:

        - billing status is canceled or incomplete_expired, or
        - cancellation recorded and the paid period has ended, or
        - the period has ended for an organization that has a provider subscription

        Organizations already marked canceled_downgraded are never candidates.
        """
        query = (
            select(
                Organization.id,
                Organization.version,
                Organization.plan_code,
                Organization.billing_status,
            )
            .where(
                Organization.billing_status != BillingStatus.CANCELED_DOWNGRADED.value,
                or_(
                    Organization.billing_status.in_(TERMINAL_BILLING_STATUSES),
                    and_(Organization.canceled_at.isnot(None), Organization.current_period_end < now),
                    and_(Organization.current_period_end < now, Organization.provider_subscription_id.isnot(None)),
                ),
            )
            .order_by(Organization.id)
        )
        try:
            rows = self.db.execute(query).all()
        finally:
            # Close the read transaction before per-candidate writes
            self.db.rollback()
        return [Candidate(org_id=r.id, version=r.version, plan_code=r.plan_code, billing_status=r.billing_status) for r in rows]

    def run(self, dry_run: bool = False, now: Optional[datetime] = None) -> ReconcileResult:
        """
        Run one reconciliation sweep

        Args:
            dry_run: Identify candidates without downgrading
            now: Override for the current time (naive UTC)

        Returns:
            ReconcileResult
        """
        now = now or datetime.utcnow()
        candidates = self.find_candidates(now)
        result = ReconcileResult(candidates=len(candidates), dry_run=dry_run, candidate_ids=[c.org_id for c in candidates])

        logger.info(f"Reconciler found {len(candidates)} candidate(s) (dry_run={dry_run}, now={now.isoformat()})")
        if dry_run:
            for candidate in candidates:
                logger.info(f"[DRY RUN] Would downgrade org {candidate.org_id} (plan={candidate.plan_code}, status={candidate.billing_status})")
            return result

        for candidate in candidates:
            reason = self._downgrade_isolated(candidate, now)
            if reason is None:
                result.downgraded += 1
            else:
                result.skipped[reason] += 1
                ReconcilerMetrics.record_skip(reason)

        return result

    def _downgrade_isolated(self, candidate: Candidate, now: datetime) -> Optional[str]:
        """
        Downgrade one candidate in its own transaction

        Returns:
            None on success, otherwise the skip reason ("conflict", "timeout", "error")
        """
        try:
            applied = self.downgrade(candidate, now)
        except CandidateTimeout as e:
            self.db.rollback()
            logger.warning(f"Downgrade of org {candidate.org_id} timed out; retried next run: {e}")
            return "timeout"
        except OperationalError as e:
            self.db.rollback()
            if getattr(e.orig, "pgcode", None) == QUERY_CANCELED:
                logger.warning(f"Downgrade of org {candidate.org_id} hit statement timeout; retried next run")
                return "timeout"
            logger.error(f"Downgrade of org {candidate.org_id} failed: {e}")
            return "error"
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Downgrade of org {candidate.org_id} failed: {e}")
            return "error"

        if not applied:
            logger.warning(
                f"Org {candidate.org_id} changed since it was read (version {candidate.version}); downgrade skipped"
            )
            return "conflict"
        return None

    def downgrade(self, candidate: Candidate, now: datetime) -> bool:
        """
        Move the organization to the free plan if it is unchanged since it was read

        Returns:
            True if downgraded, False on a concurrency conflict

        Raises:
            CandidateTimeout: If the write exceeded the per-candidate bound
        """
        started = time.monotonic()
        free = self.catalog.free_plan()

        if is_postgres(self.db):
            timeout_ms = max(int(self.candidate_timeout * 1000), 1)
            self.db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))

        applied = self.organizations.compare_and_set(
            candidate.org_id,
            candidate.version,
            {
                "plan_code": free.code,
                "quota_limit": free.monthly_quota,
                "billing_status": BillingStatus.CANCELED_DOWNGRADED.value,
                "updated_at": now,
            },
        )

        elapsed = time.monotonic() - started
        if elapsed > self.candidate_timeout:
            raise CandidateTimeout(f"{elapsed:.2f}s > {self.candidate_timeout:.2f}s")

        self.db.commit()
        if applied:
            logger.info(f"Downgraded org {candidate.org_id} from {candidate.plan_code} to {free.code}")
        return applied
