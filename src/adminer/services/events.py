"""
Webhook event model - tagged union over the event kinds the dispatcher understands
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, Field, ValidationError, field_validator
import logging

logger = logging.getLogger(__name__)

SOURCE_BILLING = "billing"
SOURCE_WORKER = "worker"

WORKER_SUCCESS_TYPES = {"RUN.SUCCEEDED", "RUN.COMPLETED"}
WORKER_FAILURE_TYPES = {"RUN.FAILED", "RUN.ABORTED", "RUN.TIMED_OUT"}

# billing event type -> subscription action
SUBSCRIPTION_ACTIONS = {
    "subscription.created": "created",
    "subscription.updated": "updated",
    "subscription.active": "renewed",
    "subscription.renewed": "renewed",
    "subscription.canceled": "canceled",
    "subscription.cancelled": "canceled",
    "subscription.expired": "expired",
    "subscription.failed": "expired",
}

DEFAULT_STATUS_FOR_ACTION = {
    "created": "active",
    "updated": "active",
    "renewed": "active",
    "canceled": "canceled",
    "expired": "incomplete_expired",
}


def plan_from_product(product: Optional[str]) -> Optional[str]:
    """Map a billing product name to a plan code"""
    if not product:
        return None
    p = product.lower()
    if "enterprise" in p:
        return "enterprise"
    if "pro" in p:
        return "pro"
    return "free"


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class JobCompletionEvent(BaseModel):
    """External worker finished (or gave up on) a job"""
    kind: Literal["job_completion"] = "job_completion"
    event_type: str
    job_id: str = Field(..., min_length=1)
    run_id: Optional[str] = None
    succeeded: bool
    error: Optional[str] = None


class SubscriptionChangeEvent(BaseModel):
    """Billing provider changed an organization's subscription"""
    kind: Literal["subscription_change"] = "subscription_change"
    event_type: str
    action: Literal["created", "updated", "renewed", "canceled", "expired"]
    org_id: str = Field(..., min_length=1)
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: str
    plan_code: Optional[str] = None
    current_period_end: Optional[datetime] = None
    occurred_at: datetime

    @field_validator("current_period_end", "occurred_at")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None


class UnknownEvent(BaseModel):
    """Any event the dispatcher has no handler for; recorded only"""
    kind: Literal["unknown"] = "unknown"
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None


WebhookEventModel = Annotated[
    Union[JobCompletionEvent, SubscriptionChangeEvent, UnknownEvent],
    Field(discriminator="kind"),
]


class WebhookEnvelope(BaseModel):
    """Provider-neutral envelope: {id, type, data}"""
    id: str = Field(..., min_length=1, max_length=128)
    type: str = Field(..., min_length=1, max_length=128)
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


def _parse_worker_event(event_type: str, data: Dict[str, Any]) -> Union[JobCompletionEvent, UnknownEvent]:
    if event_type not in WORKER_SUCCESS_TYPES and event_type not in WORKER_FAILURE_TYPES:
        return UnknownEvent(event_type=event_type, payload=data)

    succeeded = event_type in WORKER_SUCCESS_TYPES
    resource = data.get("resource") or {}
    error = None
    if not succeeded:
        error = data.get("error") or resource.get("statusMessage") or f"Worker run ended with {event_type}"
    return JobCompletionEvent(
        event_type=event_type,
        job_id=data.get("jobId") or "",
        run_id=data.get("runId") or resource.get("id"),
        succeeded=succeeded,
        error=str(error) if error else None,
    )


def _billing_org_id(metadata: Dict[str, Any], data: Dict[str, Any]) -> str:
    for source, key in (
        (metadata, "orgExternalId"),
        (data, "orgExternalId"),
        (metadata, "orgId"),
        (data, "orgId"),
    ):
        if source.get(key):
            return source[key]
    return ""


def _parse_billing_event(
    event_type: str,
    data: Dict[str, Any],
    occurred_at: datetime,
) -> Union[SubscriptionChangeEvent, UnknownEvent]:
    action = SUBSCRIPTION_ACTIONS.get(event_type)
    if action is None:
        return UnknownEvent(event_type=event_type, payload=data)

    metadata = data.get("metadata") or {}
    return SubscriptionChangeEvent(
        event_type=event_type,
        action=action,
        org_id=_billing_org_id(metadata, data),
        customer_id=data.get("customerId"),
        subscription_id=data.get("subscriptionId"),
        status=data.get("status") or DEFAULT_STATUS_FOR_ACTION[action],
        plan_code=plan_from_product(data.get("product")),
        current_period_end=data.get("currentPeriodEnd"),
        occurred_at=data.get("occurredAt") or occurred_at,
    )


def parse_event(
    source: str,
    event_type: str,
    data: Dict[str, Any],
    occurred_at: Optional[datetime] = None,
) -> Union[JobCompletionEvent, SubscriptionChangeEvent, UnknownEvent]:
    """
    Parse a webhook payload into a typed event. Never raises.

    A known event type whose data does not validate (missing job or
    organization id, unparseable timestamps) becomes an UnknownEvent
    carrying the raw data and the validation reason.

    Args:
        source: "billing" or "worker"
        event_type: Provider event type
        data: Event data object
        occurred_at: Provider timestamp, or receive time when absent
    """
    occurred_at = occurred_at or datetime.utcnow()
    try:
        if source == SOURCE_WORKER:
            return _parse_worker_event(event_type, data)
        if source == SOURCE_BILLING:
            return _parse_billing_event(event_type, data, occurred_at)
    except (ValidationError, AttributeError, TypeError) as e:
        logger.warning(f"Unparseable {source} event {event_type}: {e}")
        return UnknownEvent(event_type=event_type, payload=data, reason=str(e)[:500])
    return UnknownEvent(event_type=event_type, payload=data, reason=f"unknown source {source}")
