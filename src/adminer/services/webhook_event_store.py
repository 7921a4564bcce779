"""
Webhook Event Store - append-only idempotency ledger keyed by provider event id
"""
import base64
from datetime import datetime
from typing import Optional, List, Tuple
from sqlalchemy import select, update, or_, and_
from sqlalchemy.orm import Session
import logging

from ..db.engine import dialect_insert
from ..db.models import WebhookEvent, DispatchStatus

logger = logging.getLogger(__name__)

webhook_events = WebhookEvent.__table__


def encode_cursor(received_at: datetime, event_id: str) -> str:
    raw = f"{received_at.isoformat()}|{event_id}"
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> Tuple[datetime, str]:
    """
    Decode a keyset cursor produced by encode_cursor

    Raises:
        ValueError: If the cursor is malformed
    """
    try:
        raw = base64.urlsafe_b64decode(cursor.encode()).decode()
        received_at, event_id = raw.split("|", 1)
        return datetime.fromisoformat(received_at), event_id
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        raise ValueError(f"Invalid cursor: {cursor}") from e


class WebhookEventStore:
    """Records provider events exactly once and tracks their dispatch"""

    def __init__(self, db: Session):
        self.db = db

    def record_if_new(
        self,
        event_id: str,
        event_type: str,
        payload: str,
        source: str,
        received_at: Optional[datetime] = None,
    ) -> bool:
        """
        Insert the event unless its id was already recorded.

        A single INSERT ... ON CONFLICT DO NOTHING is the whole deduplication
        mechanism; there is no existence check beforehand.

        Args:
            event_id: Provider-assigned event id
            event_type: Provider event type
            payload: Raw request body, stored verbatim
            source: Event source ("billing" or "worker")
            received_at: Receive timestamp (defaults to now, UTC)

        Returns:
            True if this call recorded the event, False for a redelivery
        """
        stmt = (
            dialect_insert(self.db, webhook_events)
            .values(
                id=event_id,
                source=source,
                event_type=event_type,
                payload=payload,
                received_at=received_at or datetime.utcnow(),
                dispatch_status=DispatchStatus.PENDING.value,
            )
            .on_conflict_do_nothing(index_elements=["id"])
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        is_new = result.rowcount == 1
        if not is_new:
            logger.info(f"Duplicate {source} webhook event {event_id} ({event_type}) ignored")
        return is_new

    def get(self, event_id: str) -> Optional[WebhookEvent]:
        return self.db.get(WebhookEvent, event_id)

    def _mark(self, event_id: str, status: DispatchStatus, error: Optional[str] = None) -> None:
        try:
            self.db.execute(
                update(webhook_events)
                .where(webhook_events.c.id == event_id)
                .values(
                    dispatch_status=status.value,
                    dispatched_at=datetime.utcnow(),
                    dispatch_error=error,
                )
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def mark_dispatched(self, event_id: str) -> None:
        self._mark(event_id, DispatchStatus.DISPATCHED)

    def mark_skipped(self, event_id: str) -> None:
        """Recorded only; no side effect applied (unknown type or no-op)"""
        self._mark(event_id, DispatchStatus.SKIPPED)

    def mark_failed(self, event_id: str, error: str) -> None:
        """Dispatch failed; the event stays recorded for out-of-band retry"""
        self._mark(event_id, DispatchStatus.FAILED, error=error[:2000])

    def list_events(
        self,
        q: Optional[str] = None,
        event_type: Optional[str] = None,
        received_from: Optional[datetime] = None,
        received_to: Optional[datetime] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> Tuple[List[WebhookEvent], Optional[str]]:
        """
        List recorded events, newest first, with keyset pagination

        Args:
            q: Substring matched against event id and type
            event_type: Exact event type
            received_from: Inclusive lower bound on received_at
            received_to: Inclusive upper bound on received_at
            cursor: Opaque cursor from a previous page
            limit: Page size (1..200)

        Returns:
            (events, next_cursor) where next_cursor is None on the last page
        """
        limit = max(1, min(limit, 200))
        query = select(WebhookEvent)

        if q:
            pattern = f"%{q}%"
            query = query.where(or_(WebhookEvent.id.ilike(pattern), WebhookEvent.event_type.ilike(pattern)))
        if event_type:
            query = query.where(WebhookEvent.event_type == event_type)
        if received_from:
            query = query.where(WebhookEvent.received_at >= received_from)
        if received_to:
            query = query.where(WebhookEvent.received_at <= received_to)
        if cursor:
            cursor_at, cursor_id = decode_cursor(cursor)
            query = query.where(
                or_(
                    WebhookEvent.received_at < cursor_at,
                    and_(WebhookEvent.received_at == cursor_at, WebhookEvent.id < cursor_id),
                )
            )

        query = query.order_by(WebhookEvent.received_at.desc(), WebhookEvent.id.desc()).limit(limit + 1)
        rows = list(self.db.execute(query).scalars())

        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            last = rows[-1]
            next_cursor = encode_cursor(last.received_at, last.id)
        return rows, next_cursor
