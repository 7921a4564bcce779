"""
Event Dispatcher - routes deduplicated webhook events to their domain effects
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy import update
from sqlalchemy.orm import Session
import logging

from ..db.models import Job, JobStatus, BillingStatus, NON_TERMINAL_JOB_STATUSES
from ..exceptions import ConcurrencyConflict
from .events import (
    JobCompletionEvent,
    SubscriptionChangeEvent,
    UnknownEvent,
    WebhookEnvelope,
    WebhookEventModel,
    parse_event,
)
from .metrics import WebhookMetrics
from .organization_service import OrganizationService
from .plan_catalog import PlanCatalog
from .webhook_event_store import WebhookEventStore

logger = logging.getLogger(__name__)

jobs = Job.__table__

# Provider subscription statuses mapped onto BillingStatus
PROVIDER_STATUS_MAP = {
    "active": BillingStatus.ACTIVE,
    "trialing": BillingStatus.ACTIVE,
    "past_due": BillingStatus.PAST_DUE,
    "on_hold": BillingStatus.PAST_DUE,
    "unpaid": BillingStatus.PAST_DUE,
    "paused": BillingStatus.INACTIVE,
    "inactive": BillingStatus.INACTIVE,
    "pending": BillingStatus.INACTIVE,
    "canceled": BillingStatus.CANCELED,
    "cancelled": BillingStatus.CANCELED,
    "expired": BillingStatus.INCOMPLETE_EXPIRED,
    "failed": BillingStatus.INCOMPLETE_EXPIRED,
    "incomplete_expired": BillingStatus.INCOMPLETE_EXPIRED,
}


class EventDispatcher:
    """Applies side effects for one webhook event"""

    MAX_CAS_ATTEMPTS = 3

    def __init__(self, db: Session, catalog: PlanCatalog):
        self.db = db
        self.catalog = catalog
        self.organizations = OrganizationService(db, catalog)

    def dispatch(self, event: WebhookEventModel) -> bool:
        """
        Route an event to its handler

        Returns:
            True if a side effect was applied, False for a no-op
        """
        if isinstance(event, JobCompletionEvent):
            return self.handle_job_completion(event)
        if isinstance(event, SubscriptionChangeEvent):
            return self.handle_subscription_change(event)
        return self.handle_unknown(event)

    def handle_job_completion(self, event: JobCompletionEvent) -> bool:
        """
        Move a job to its terminal state.

        Guarded by a non-terminal status so a replayed event is a no-op. The
        quota was debited at admission; the ledger is not touched here.
        """
        terminal = JobStatus.COMPLETED if event.succeeded else JobStatus.FAILED
        now = datetime.utcnow()
        values = {"status": terminal.value, "completed_at": now, "updated_at": now}
        if event.run_id:
            values["worker_run_id"] = event.run_id
        if event.error:
            values["error"] = event.error[:2000]

        try:
            result = self.db.execute(
                update(jobs)
                .where(jobs.c.id == event.job_id, jobs.c.status.in_(NON_TERMINAL_JOB_STATUSES))
                .values(**values)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if result.rowcount == 0:
            logger.info(f"Job {event.job_id} already terminal or unknown; {event.event_type} ignored")
            return False
        logger.info(f"Job {event.job_id} -> {terminal.value} ({event.event_type})")
        return True

    def handle_subscription_change(self, event: SubscriptionChangeEvent) -> bool:
        """
        Update organization billing fields with a compare-and-swap write.

        Events older than the last applied billing event are ignored. A lost
        CAS re-reads the row and retries a bounded number of times.

        Raises:
            ConcurrencyConflict: If every attempt lost against a concurrent writer
        """
        for attempt in range(1, self.MAX_CAS_ATTEMPTS + 1):
            org = self.organizations.get(event.org_id)
            if org is None:
                logger.warning(f"Subscription event {event.event_type} for unknown organization {event.org_id}")
                self.db.rollback()
                return False

            if org.last_billing_event_at and event.occurred_at < org.last_billing_event_at:
                logger.info(
                    f"Stale {event.event_type} for org {org.id} "
                    f"({event.occurred_at} < {org.last_billing_event_at}); ignored"
                )
                self.db.rollback()
                return False

            patch = self._subscription_patch(event)
            try:
                applied = self.organizations.compare_and_set(org.id, org.version, patch)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            if applied:
                logger.info(
                    f"Org {org.id} billing updated by {event.event_type}: "
                    f"status={patch.get('billing_status', org.billing_status)} plan={patch.get('plan_code', org.plan_code)}"
                )
                return True
            logger.warning(f"Concurrent update on org {org.id} (attempt {attempt}/{self.MAX_CAS_ATTEMPTS})")

        raise ConcurrencyConflict(f"Could not apply {event.event_type} to org {event.org_id}")

    def _subscription_patch(self, event: SubscriptionChangeEvent) -> Dict[str, Any]:
        patch: Dict[str, Any] = {"last_billing_event_at": event.occurred_at}
        status = PROVIDER_STATUS_MAP.get((event.status or "").lower())
        if status is not None:
            patch["billing_status"] = status.value
        else:
            logger.warning(
                f"Unrecognized subscription status {event.status!r} on {event.event_type} "
                f"for org {event.org_id}; keeping current status"
            )
        if event.customer_id:
            patch["provider_customer_id"] = event.customer_id
        if event.subscription_id:
            patch["provider_subscription_id"] = event.subscription_id
        if event.current_period_end:
            patch["current_period_end"] = event.current_period_end

        if event.action == "canceled":
            # Paid plan stays until the reconciler downgrades at period end
            patch["billing_status"] = BillingStatus.CANCELED.value
            patch["canceled_at"] = event.occurred_at
        elif event.action == "expired":
            patch["billing_status"] = BillingStatus.INCOMPLETE_EXPIRED.value
        elif status == BillingStatus.ACTIVE:
            patch["canceled_at"] = None
            plan = self.catalog.get(event.plan_code) if event.plan_code else None
            if plan is not None:
                patch["plan_code"] = plan.code
                patch["quota_limit"] = plan.monthly_quota
        return patch

    def handle_unknown(self, event: UnknownEvent) -> bool:
        reason = f" ({event.reason})" if event.reason else ""
        logger.info(f"No handler for event type {event.event_type}{reason}; recorded only")
        return False


@dataclass
class IngestResult:
    duplicate: bool
    applied: bool = False
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        # Dispatch errors stay internal; the provider only needs the acknowledgment
        return {"ok": True, "duplicate": self.duplicate}


def ingest_webhook_event(
    db: Session,
    catalog: PlanCatalog,
    source: str,
    envelope: WebhookEnvelope,
    raw_body: str,
) -> IngestResult:
    """
    Record an event once and dispatch it.

    Store failures before the event is recorded propagate so the provider
    retries. Once recorded, dispatch failures are logged, counted and
    persisted on the event row, never raised.

    Args:
        db: Database session
        catalog: Plan reference data
        source: "billing" or "worker"
        envelope: Parsed {id, type, data} envelope
        raw_body: Raw request body, stored verbatim

    Returns:
        IngestResult
    """
    store = WebhookEventStore(db)
    received_at = datetime.utcnow()
    if not store.record_if_new(envelope.id, envelope.type, raw_body, source, received_at=received_at):
        WebhookMetrics.record_received(source, "duplicate")
        return IngestResult(duplicate=True)
    WebhookMetrics.record_received(source, "new")

    event = parse_event(source, envelope.type, envelope.data, envelope.timestamp or received_at)
    try:
        applied = EventDispatcher(db, catalog).dispatch(event)
    except Exception as e:
        db.rollback()
        logger.error(f"Dispatch of {source} event {envelope.id} ({envelope.type}) failed: {e}", exc_info=True)
        WebhookMetrics.record_dispatch(event.kind, ok=False)
        _mark_safely(store.mark_failed, envelope.id, f"{type(e).__name__}: {e}")
        return IngestResult(duplicate=False, error=str(e))

    WebhookMetrics.record_dispatch(event.kind, ok=True)
    if applied:
        _mark_safely(store.mark_dispatched, envelope.id)
    else:
        _mark_safely(store.mark_skipped, envelope.id)
    return IngestResult(duplicate=False, applied=applied)


def _mark_safely(mark, event_id: str, *args) -> None:
    try:
        mark(event_id, *args)
    except Exception as e:
        # The event itself is already recorded
        logger.error(f"Could not update dispatch status of event {event_id}: {e}")
