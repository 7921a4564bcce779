"""
Plan Catalog - plan reference data loaded from YAML
"""
from dataclasses import dataclass
from typing import Dict, Optional, List
from pathlib import Path
from sqlalchemy.orm import Session
import logging
import yaml

from ..config import config
from ..db.engine import dialect_insert
from ..db.models import Plan, Organization
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

FREE_PLAN = "free"


@dataclass(frozen=True)
class PlanDefinition:
    code: str
    name: str
    monthly_quota: int
    sort_order: int = 0
    upgrade_to: Optional[str] = None


class PlanCatalog:
    """Read-only lookup of plans by plan code"""

    def __init__(self, plans: Dict[str, PlanDefinition]):
        if FREE_PLAN not in plans:
            raise ConfigurationError("Plan reference data has no 'free' plan")
        self._plans = plans

    @classmethod
    def from_yaml(cls, path: str) -> "PlanCatalog":
        """
        Load plans from a YAML file

        Args:
            path: Path to a YAML document with a top-level ``plans`` mapping

        Returns:
            PlanCatalog

        Raises:
            ConfigurationError: If the file is missing or a plan is malformed
        """
        plans_path = Path(path)
        if not plans_path.exists():
            raise ConfigurationError(f"Plans file not found: {path}")

        with open(plans_path, "r") as f:
            document = yaml.safe_load(f) or {}

        raw_plans = document.get("plans")
        if not isinstance(raw_plans, dict) or not raw_plans:
            raise ConfigurationError(f"Plans file {path} has no 'plans' mapping")

        plans = {}
        for code, entry in raw_plans.items():
            entry = entry or {}
            quota = entry.get("monthly_quota")
            if isinstance(quota, bool) or not isinstance(quota, int) or quota < 0:
                raise ConfigurationError(f"Plan '{code}' must have a non-negative integer monthly_quota")
            upgrade_to = entry.get("upgrade_to")
            if upgrade_to is not None and upgrade_to not in raw_plans:
                raise ConfigurationError(f"Plan '{code}' upgrades to unknown plan '{upgrade_to}'")
            plans[code] = PlanDefinition(
                code=code,
                name=entry.get("name", code.title()),
                monthly_quota=quota,
                sort_order=int(entry.get("sort_order", 0)),
                upgrade_to=upgrade_to,
            )

        return cls(plans)

    def get(self, code: str) -> Optional[PlanDefinition]:
        return self._plans.get(code)

    def free_plan(self) -> PlanDefinition:
        return self._plans[FREE_PLAN]

    def all(self) -> List[PlanDefinition]:
        return sorted(self._plans.values(), key=lambda p: p.sort_order)

    def effective_limit(self, org: Organization) -> int:
        """Organization quota override if set, otherwise the plan's monthly quota"""
        if org.quota_limit is not None:
            return org.quota_limit
        plan = self.get(org.plan_code)
        return plan.monthly_quota if plan else 0

    def upgrade_url(self, plan_code: str) -> str:
        """
        Actionable upgrade reference for an organization on the given plan.
        Falls back to the pricing page; never empty.
        """
        plan = self.get(plan_code)
        if plan and plan.upgrade_to:
            checkout = config.checkout_url(plan.upgrade_to)
            if checkout:
                return checkout
        return config.PRICING_URL or "/pricing"

    def seed(self, db: Session) -> int:
        """
        Insert plans missing from the plans table and refresh existing rows

        Returns:
            Number of plans written
        """
        for plan in self.all():
            stmt = dialect_insert(db, Plan.__table__).values(
                code=plan.code,
                name=plan.name,
                monthly_quota=plan.monthly_quota,
                sort_order=plan.sort_order,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["code"],
                set_={
                    "name": plan.name,
                    "monthly_quota": plan.monthly_quota,
                    "sort_order": plan.sort_order,
                },
            )
            db.execute(stmt)
        db.commit()
        logger.info(f"Seeded {len(self._plans)} plans: {', '.join(p.code for p in self.all())}")
        return len(self._plans)


# Global catalog instance
_plan_catalog: Optional[PlanCatalog] = None


def get_plan_catalog() -> PlanCatalog:
    """Get global plan catalog, loading it on first use"""
    global _plan_catalog
    if _plan_catalog is None:
        _plan_catalog = PlanCatalog.from_yaml(config.PLANS_FILE)
    return _plan_catalog
