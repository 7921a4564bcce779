"""
Admin routes for webhook auditing and manual reconciliation
Protected by the admin API token
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
import logging

from .auth import require_admin
from .config import config
from .db.engine import get_db
from .schemas import WebhookEventPage, WebhookEventSummary
from .services.events import to_naive_utc
from .services.scheduled_jobs import run_reconciler_job
from .services.webhook_event_store import WebhookEventStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.get("/webhook-events", response_model=WebhookEventPage)
def list_webhook_events(
    q: Optional[str] = Query(None, max_length=128),
    event_type: Optional[str] = Query(None, alias="type"),
    received_from: Optional[datetime] = Query(None, alias="from"),
    received_to: Optional[datetime] = Query(None, alias="to"),
    cursor: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """
    List recorded webhook events, newest first

    Pagination is keyset-based on (received_at, id); pass ``next_cursor``
    back as ``cursor`` to fetch the next page.
    """
    try:
        events, next_cursor = WebhookEventStore(db).list_events(
            q=q,
            event_type=event_type,
            received_from=_naive_utc(received_from),
            received_to=_naive_utc(received_to),
            cursor=cursor,
            limit=limit,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return WebhookEventPage(
        items=[WebhookEventSummary.model_validate(e) for e in events],
        next_cursor=next_cursor,
    )


@router.post("/reconcile")
async def trigger_reconcile(
    dry_run: bool = Query(False, alias="dryRun"),
    now: Optional[datetime] = Query(None, description="Override current time (testing)"),
):
    """
    Run the billing reconciliation sweep synchronously

    Returns {downgraded, candidates, dryRun}.
    """
    if not config.BILLING_AUTODOWNGRADE_ENABLED:
        logger.info("Manual reconcile requested but BILLING_AUTODOWNGRADE_ENABLED is off")
        return {"ok": True, "skipped": True, "reason": "feature_flag_off"}

    logger.info(f"Manual reconcile triggered (dry_run={dry_run})")
    result = await run_in_threadpool(run_reconciler_job, dry_run, _naive_utc(now))
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reconciliation failed; see logs"
        )
    return result


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    return to_naive_utc(value) if value is not None else None
