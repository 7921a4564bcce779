"""
Organization Service - organization lookup, free-plan bootstrap and
compare-and-swap writes on billing state
"""
from datetime import datetime
from typing import Optional, Dict, Any, Tuple
from sqlalchemy import select, update
from sqlalchemy.orm import Session
import logging

from ..db.engine import dialect_insert
from ..db.models import Organization, BillingStatus
from .plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)

organizations = Organization.__table__


class OrganizationService:
    """Service for reading and mutating organization billing state"""

    def __init__(self, db: Session, catalog: PlanCatalog):
        self.db = db
        self.catalog = catalog

    def get(self, org_id: Optional[str]) -> Optional[Organization]:
        """Fresh read of an organization (bypasses the session identity map)"""
        if not org_id:
            return None
        return self.db.execute(
            select(Organization)
            .where(Organization.id == org_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def bootstrap_free(self, org_id: str, name: Optional[str] = None) -> Tuple[Organization, bool]:
        """
        Create the organization on the free plan unless it already exists.
        An existing organization is never modified.

        Args:
            org_id: Stable external organization id
            name: Optional display name

        Returns:
            (organization, created)
        """
        free = self.catalog.free_plan()
        now = datetime.utcnow()
        try:
            result = self.db.execute(
                dialect_insert(self.db, organizations)
                .values(
                    id=org_id,
                    name=name,
                    plan_code=free.code,
                    quota_limit=free.monthly_quota,
                    billing_status=BillingStatus.INACTIVE.value,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["id"])
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        created = result.rowcount == 1
        if created:
            logger.info(f"Bootstrapped organization {org_id} on the free plan")
        return self.get(org_id), created

    def compare_and_set(self, org_id: str, expected_version: int, values: Dict[str, Any]) -> bool:
        """
        Apply ``values`` only if the row still carries ``expected_version``.
        Increments the version in the same statement. Does not commit.

        Args:
            org_id: Organization id
            expected_version: Version observed when the row was read
            values: Column values to write

        Returns:
            True if the row was updated, False on a concurrent modification
        """
        patch = dict(values)
        patch.setdefault("updated_at", datetime.utcnow())
        patch["version"] = organizations.c.version + 1
        result = self.db.execute(
            update(organizations)
            .where(
                organizations.c.id == org_id,
                organizations.c.version == expected_version,
            )
            .values(**patch)
        )
        return result.rowcount == 1
