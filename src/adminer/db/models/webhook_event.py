"""
Webhook event model (idempotency ledger)
"""
from sqlalchemy import Column, String, DateTime, Text, Index
from datetime import datetime
import enum

from ..base import Base


class DispatchStatus(str, enum.Enum):
    """Side-effect dispatch status enum"""
    PENDING = "pending"
    DISPATCHED = "dispatched"
    SKIPPED = "skipped"
    FAILED = "failed"


class WebhookEvent(Base):
    """Provider webhook event, keyed by the provider-assigned event id"""
    __tablename__ = "webhook_events"

    id = Column(String(128), primary_key=True)  # Provider event id, sole dedup token
    source = Column(String(32), nullable=False, index=True)  # 'billing', 'worker'
    event_type = Column(String(128), nullable=False, index=True)
    payload = Column(Text, nullable=False)  # Raw request body, stored verbatim
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    dispatch_status = Column(String(16), nullable=False, default=DispatchStatus.PENDING.value, index=True)
    dispatched_at = Column(DateTime, nullable=True)
    dispatch_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_webhook_events_received_at_id", "received_at", "id"),
    )
