"""
Scheduled Jobs Service
Manages the recurring billing reconciliation sweep
"""
import logging
import time
from datetime import datetime
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import config

logger = logging.getLogger(__name__)

RECONCILER_JOB_ID = "billing_reconciler"

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """
    Get or create the background scheduler instance

    Returns:
        BackgroundScheduler instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            timezone="UTC",
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Only one instance at a time
                'misfire_grace_time': 3600  # 1 hour grace period
            }
        )

    return _scheduler


def register_jobs(scheduler: BackgroundScheduler) -> None:
    """Register recurring jobs on the scheduler"""
    scheduler.add_job(
        func=run_reconciler_job,
        trigger=CronTrigger.from_crontab(config.RECONCILER_CRON, timezone="UTC"),
        id=RECONCILER_JOB_ID,
        name='Downgrade lapsed subscriptions',
        replace_existing=True
    )
    logger.info(f"Registered billing reconciler job (cron '{config.RECONCILER_CRON}' UTC, dry_run={config.DOWNGRADE_DRY_RUN})")


def start_scheduler():
    """
    Start the background scheduler and register all jobs
    """
    scheduler = get_scheduler()

    if not scheduler.running:
        register_jobs(scheduler)
        scheduler.start()
        logger.info("Background scheduler started")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """
    Stop the background scheduler
    """
    scheduler = get_scheduler()

    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")


def run_reconciler_job(dry_run: Optional[bool] = None, now: Optional[datetime] = None) -> Optional[dict]:
    """
    Billing reconciliation job - runs daily to downgrade lapsed subscriptions

    Args:
        dry_run: Override DOWNGRADE_DRY_RUN
        now: Override for the current time (testing)

    Returns:
        {downgraded, candidates, dryRun}, or None if the sweep failed
    """
    from ..db.engine import SessionLocal
    from .billing_reconciler import BillingReconciler
    from .metrics import ReconcilerMetrics
    from .plan_catalog import get_plan_catalog

    if dry_run is None:
        dry_run = config.DOWNGRADE_DRY_RUN

    logger.info("=" * 60)
    logger.info("Starting scheduled billing reconciliation job")
    logger.info("=" * 60)

    db = SessionLocal()
    start_time = time.time()

    try:
        reconciler = BillingReconciler(db, get_plan_catalog(), candidate_timeout=config.RECONCILER_CANDIDATE_TIMEOUT)
        result = reconciler.run(dry_run=dry_run, now=now)
        duration = time.time() - start_time

        logger.info("=" * 60)
        logger.info("Billing Reconciliation Summary")
        logger.info("=" * 60)
        logger.info(f"Dry run: {result.dry_run}")
        logger.info(f"Candidates found: {result.candidates}")
        logger.info(f"Organizations downgraded: {result.downgraded}")
        logger.info(f"Skipped (conflict): {result.skipped['conflict']}")
        logger.info(f"Skipped (timeout): {result.skipped['timeout']}")
        logger.info(f"Skipped (error): {result.skipped['error']}")
        logger.info(f"Duration: {duration:.2f}s")
        logger.info("=" * 60)

        ReconcilerMetrics.record_run("ok", candidates=result.candidates, downgraded=result.downgraded, duration=duration)
        return result.to_dict()

    except Exception as e:
        logger.error(f"Fatal error during billing reconciliation job: {e}", exc_info=True)
        ReconcilerMetrics.record_run("fatal_error")
        return None

    finally:
        db.close()
        logger.info("Billing reconciliation job finished")
