"""
Quota Service - read-only quota status for an organization
"""
from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from .organization_service import OrganizationService
from .plan_catalog import PlanCatalog
from .usage_ledger import UsageLedger, period_for, next_period_start


class QuotaService:
    """Service for reporting quota usage"""

    def __init__(self, db: Session, catalog: PlanCatalog):
        self.db = db
        self.catalog = catalog

    def get_status(self, org_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """
        Get quota status for the current billing period

        Args:
            org_id: Organization id
            now: Override for the current time (naive UTC)

        Returns:
            Status dict, or None if the organization does not exist
        """
        org = OrganizationService(self.db, self.catalog).get(org_id)
        if org is None:
            return None

        period = period_for(now)
        snapshot = UsageLedger(self.db).get_usage(org.id, period)
        plan = self.catalog.get(org.plan_code)

        return {
            "plan": org.plan_code,
            "plan_name": plan.name if plan else org.plan_code,
            "used": snapshot.used,
            "limit": snapshot.limit,
            "remaining": max(snapshot.limit - snapshot.used, 0),
            "period": period,
            "reset_at": next_period_start(period),
            "billing_status": org.billing_status,
            "upgrade_url": self.catalog.upgrade_url(org.plan_code),
        }
