"""
Webhook routes - billing provider and worker platform callbacks

Once a delivery is authenticated the provider always gets a 200 unless the
event could not be recorded, so that retries happen only when useful.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
import logging

from .config import config
from .db.engine import get_db
from .exceptions import TransientStoreError
from .services.event_dispatcher import ingest_webhook_event
from .services.events import SOURCE_BILLING, SOURCE_WORKER
from .services.metrics import WebhookMetrics
from .services.plan_catalog import PlanCatalog, get_plan_catalog
from .services.webhook_gateway import get_webhook_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])


async def _receive(source: str, request: Request, db: Session, catalog: PlanCatalog) -> dict:
    body = await request.body()

    gateway = get_webhook_gateway(source, config)
    if not gateway.verify_webhook_signature(body, request.headers.get(gateway.signature_header)):
        WebhookMetrics.record_received(source, "invalid_signature")
        logger.warning(f"Rejected {source} webhook with missing or invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature"
        )

    envelope = gateway.parse_body(body, dict(request.query_params))
    if envelope is None:
        # Acknowledge so the provider stops retrying a payload that will never parse
        WebhookMetrics.record_received(source, "malformed")
        logger.warning(f"Malformed {source} webhook payload acknowledged ({len(body)} bytes)")
        return {"ok": True, "error": "malformed_payload"}

    try:
        result = await run_in_threadpool(
            ingest_webhook_event, db, catalog, source, envelope, body.decode("utf-8")
        )
    except SQLAlchemyError as e:
        logger.error(f"Could not record {source} event {envelope.id}: {e}")
        raise TransientStoreError("Event could not be recorded") from e

    return result.to_response()


@router.post("/billing")
async def billing_webhook(
    request: Request,
    db: Session = Depends(get_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Billing provider webhook with signature verification and idempotent ingestion"""
    return await _receive(SOURCE_BILLING, request, db, catalog)


@router.post("/worker")
async def worker_webhook(
    request: Request,
    db: Session = Depends(get_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Worker platform run-completion webhook"""
    return await _receive(SOURCE_WORKER, request, db, catalog)
