"""
Tests for the webhook event store
"""
import pytest
import threading
from datetime import datetime, timedelta

from adminer.db.engine import SessionLocal
from adminer.db.models import DispatchStatus
from adminer.services.webhook_event_store import (
    WebhookEventStore,
    encode_cursor,
    decode_cursor,
)


class TestWebhookEventStore:
    """Test exactly-once recording and dispatch tracking"""

    @pytest.fixture
    def store(self, db_session):
        return WebhookEventStore(db_session)

    def test_duplicate_delivery_is_not_new(self, store):
        payload = '{"id": "evt_123", "type": "subscription.created"}'

        assert store.record_if_new("evt_123", "subscription.created", payload, "billing") is True
        assert store.record_if_new("evt_123", "subscription.created", payload, "billing") is False

        event = store.get("evt_123")
        assert event.payload == payload
        assert event.dispatch_status == DispatchStatus.PENDING.value

    def test_first_payload_is_kept(self, store):
        store.record_if_new("evt_1", "subscription.created", '{"v": 1}', "billing")
        store.record_if_new("evt_1", "subscription.created", '{"v": 2}', "billing")

        assert store.get("evt_1").payload == '{"v": 1}'

    def test_mark_dispatched(self, store):
        store.record_if_new("evt_1", "RUN.SUCCEEDED", "{}", "worker")

        store.mark_dispatched("evt_1")

        event = store.get("evt_1")
        store.db.refresh(event)
        assert event.dispatch_status == DispatchStatus.DISPATCHED.value
        assert event.dispatched_at is not None
        assert event.dispatch_error is None

    def test_mark_skipped(self, store):
        store.record_if_new("evt_1", "customer.updated", "{}", "billing")

        store.mark_skipped("evt_1")

        event = store.get("evt_1")
        store.db.refresh(event)
        assert event.dispatch_status == DispatchStatus.SKIPPED.value

    def test_mark_failed_truncates_error(self, store):
        store.record_if_new("evt_1", "subscription.created", "{}", "billing")

        store.mark_failed("evt_1", "x" * 5000)

        event = store.get("evt_1")
        store.db.refresh(event)
        assert event.dispatch_status == DispatchStatus.FAILED.value
        assert len(event.dispatch_error) == 2000

    def test_get_missing_event(self, store):
        assert store.get("evt_missing") is None


class TestListEvents:
    """Test keyset pagination and filters"""

    @pytest.fixture
    def store(self, db_session):
        store = WebhookEventStore(db_session)
        base = datetime(2025, 3, 1, 12, 0, 0)
        for i in range(5):
            store.record_if_new(
                f"evt_{i}",
                "subscription.created" if i % 2 == 0 else "RUN.SUCCEEDED",
                "{}",
                "billing" if i % 2 == 0 else "worker",
                received_at=base + timedelta(minutes=i),
            )
        return store

    def test_newest_first_with_cursor(self, store):
        page, cursor = store.list_events(limit=2)
        assert [e.id for e in page] == ["evt_4", "evt_3"]
        assert cursor is not None

        page, cursor = store.list_events(limit=2, cursor=cursor)
        assert [e.id for e in page] == ["evt_2", "evt_1"]

        page, cursor = store.list_events(limit=2, cursor=cursor)
        assert [e.id for e in page] == ["evt_0"]
        assert cursor is None

    def test_same_timestamp_ties_break_on_id(self, db_session):
        store = WebhookEventStore(db_session)
        at = datetime(2025, 3, 1, 12, 0, 0)
        for event_id in ["evt_a", "evt_b", "evt_c"]:
            store.record_if_new(event_id, "subscription.created", "{}", "billing", received_at=at)

        first, cursor = store.list_events(limit=2)
        second, _ = store.list_events(limit=2, cursor=cursor)

        assert [e.id for e in first] == ["evt_c", "evt_b"]
        assert [e.id for e in second] == ["evt_a"]

    def test_filter_by_type(self, store):
        page, _ = store.list_events(event_type="RUN.SUCCEEDED")
        assert {e.id for e in page} == {"evt_1", "evt_3"}

    def test_search(self, store):
        page, _ = store.list_events(q="evt_2")
        assert [e.id for e in page] == ["evt_2"]

    def test_received_range(self, store):
        page, _ = store.list_events(
            received_from=datetime(2025, 3, 1, 12, 1, 0),
            received_to=datetime(2025, 3, 1, 12, 3, 0),
        )
        assert [e.id for e in page] == ["evt_3", "evt_2", "evt_1"]

    def test_invalid_cursor(self, store):
        with pytest.raises(ValueError):
            store.list_events(cursor="not-a-cursor")


class TestCursor:

    def test_cursor_encodes_position(self):
        at = datetime(2025, 3, 1, 12, 0, 0, 123456)
        assert decode_cursor(encode_cursor(at, "evt_1|x")) == (at, "evt_1|x")


class TestConcurrentDeliveries:
    """Parallel deliveries of one event record it exactly once"""

    def test_parallel_deliveries_have_one_winner(self):
        results = []
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(16)

        def deliver():
            session = SessionLocal()
            try:
                barrier.wait()
                is_new = WebhookEventStore(session).record_if_new(
                    "evt_race", "subscription.created", "{}", "billing"
                )
                with lock:
                    results.append(is_new)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=deliver) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(results) == 16
        assert results.count(True) == 1

        session = SessionLocal()
        try:
            assert WebhookEventStore(session).get("evt_race") is not None
        finally:
            session.close()
