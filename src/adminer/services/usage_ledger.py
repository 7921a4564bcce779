"""
Usage Ledger - per-organization, per-billing-period usage counters

All writes go through single conditional statements so that concurrent
debits against the same (org, period) never over-admit.
"""
from datetime import datetime
from typing import NamedTuple, Optional
from sqlalchemy import select, update, func
from sqlalchemy.orm import Session
import logging

from ..db.engine import dialect_insert
from ..db.models import UsageCounter, Organization, Plan
from .metrics import AdmissionMetrics

logger = logging.getLogger(__name__)

usage_counters = UsageCounter.__table__
organizations = Organization.__table__
plans = Plan.__table__


def period_for(moment: Optional[datetime] = None) -> str:
    """Billing period identifier ("YYYY-MM", UTC) for a naive UTC timestamp"""
    moment = moment or datetime.utcnow()
    return moment.strftime("%Y-%m")


def period_start(period: str) -> datetime:
    """First instant of a billing period"""
    return datetime.strptime(period, "%Y-%m")


def next_period_start(period: str) -> datetime:
    """First instant of the billing period following ``period`` (the reset date)"""
    start = period_start(period)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


class UsageSnapshot(NamedTuple):
    used: int
    limit: int


class DebitResult(NamedTuple):
    admitted: bool
    used: int


def _limit_expression(org_id: str):
    """Organization quota override, else the plan's monthly quota, as a scalar subquery"""
    return (
        select(func.coalesce(organizations.c.quota_limit, plans.c.monthly_quota))
        .select_from(organizations.join(plans, plans.c.code == organizations.c.plan_code))
        .where(organizations.c.id == org_id)
        .scalar_subquery()
    )


class UsageLedger:
    """Atomic usage accounting against monthly quota limits"""

    def __init__(self, db: Session):
        """
        Initialize UsageLedger

        Args:
            db: Database session
        """
        self.db = db

    def get_usage(self, org_id: str, period: str) -> UsageSnapshot:
        """
        Get usage for an organization and billing period

        Args:
            org_id: Organization id
            period: Billing period ("YYYY-MM")

        Returns:
            UsageSnapshot(used, limit); ``used`` is 0 when no counter exists yet
        """
        used = self.db.execute(
            select(usage_counters.c.used).where(
                usage_counters.c.org_id == org_id,
                usage_counters.c.period == period,
            )
        ).scalar()
        limit = self.db.execute(select(_limit_expression(org_id))).scalar()
        return UsageSnapshot(used=used or 0, limit=limit or 0)

    def try_debit(self, org_id: str, period: str, amount: int) -> DebitResult:
        """
        Debit ``amount`` units if the organization has headroom in the period.

        The counter row is created on first use and the compare-and-increment
        runs as one UPDATE, both inside the same transaction.

        Args:
            org_id: Organization id
            period: Billing period ("YYYY-MM")
            amount: Positive integer cost

        Returns:
            DebitResult(admitted, used) where ``used`` is the counter after the call
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError(f"Debit amount must be a positive integer (got {amount!r})")

        now = datetime.utcnow()
        try:
            self.db.execute(
                dialect_insert(self.db, usage_counters)
                .values(org_id=org_id, period=period, used=0, created_at=now, updated_at=now)
                .on_conflict_do_nothing(index_elements=["org_id", "period"])
            )

            used_after = self.db.execute(
                update(usage_counters)
                .where(
                    usage_counters.c.org_id == org_id,
                    usage_counters.c.period == period,
                    usage_counters.c.used + amount <= _limit_expression(org_id),
                )
                .values(used=usage_counters.c.used + amount, updated_at=now)
                .returning(usage_counters.c.used)
            ).scalar()

            if used_after is None:
                current = self.db.execute(
                    select(usage_counters.c.used).where(
                        usage_counters.c.org_id == org_id,
                        usage_counters.c.period == period,
                    )
                ).scalar()
                self.db.commit()
                AdmissionMetrics.record_debit(False)
                logger.info(f"Debit rejected for org {org_id} period {period}: used={current} amount={amount}")
                return DebitResult(admitted=False, used=current or 0)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        AdmissionMetrics.record_debit(True)
        logger.debug(f"Debited {amount} for org {org_id} period {period}: used={used_after}")
        return DebitResult(admitted=True, used=used_after)
