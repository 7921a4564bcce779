"""
Billing API routes - organization bootstrap on the free plan
"""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from .auth import get_current_org_id
from .db.engine import get_db
from .exceptions import TransientStoreError
from .schemas import BootstrapFreeRequest, BootstrapFreeResponse
from .services.organization_service import OrganizationService
from .services.plan_catalog import PlanCatalog, get_plan_catalog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/billing", tags=["billing"])


@router.post("/bootstrap-free", response_model=BootstrapFreeResponse)
def bootstrap_free(
    request: Optional[BootstrapFreeRequest] = None,
    org_id: str = Depends(get_current_org_id),
    db: Session = Depends(get_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """
    Create the organization on the free plan if it does not exist yet.
    Idempotent; an existing organization is returned unchanged.
    """
    name = request.name if request else None
    try:
        org, created = OrganizationService(db, catalog).bootstrap_free(org_id, name=name)
    except SQLAlchemyError as e:
        logger.error(f"Free plan bootstrap failed for org {org_id}: {e}")
        raise TransientStoreError() from e
    return BootstrapFreeResponse(org_id=org.id, plan=org.plan_code, created=created)
