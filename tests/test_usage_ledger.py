"""
Tests for the usage ledger
"""
import pytest
import threading
from datetime import datetime
from sqlalchemy.exc import IntegrityError

from adminer.db.engine import SessionLocal
from adminer.services.metrics import get_metrics_collector
from adminer.services.usage_ledger import (
    UsageLedger,
    period_for,
    period_start,
    next_period_start,
)


class TestPeriods:
    """Billing period helpers"""

    def test_period_for(self):
        assert period_for(datetime(2025, 1, 31, 23, 59, 59)) == "2025-01"
        assert period_for(datetime(2025, 2, 1, 0, 0, 0)) == "2025-02"

    def test_period_start(self):
        assert period_start("2025-03") == datetime(2025, 3, 1)

    def test_next_period_start_rolls_over_year(self):
        assert next_period_start("2025-11") == datetime(2025, 12, 1)
        assert next_period_start("2025-12") == datetime(2026, 1, 1)


class TestUsageLedger:
    """Test atomic debits against the monthly quota"""

    @pytest.fixture
    def ledger(self, db_session):
        return UsageLedger(db_session)

    def test_debit_up_to_limit_then_reject(self, ledger, make_org, set_usage):
        """Limit 100 with 99 used admits one more unit and no further"""
        org_id = make_org("org_a", plan_code="pro", quota_limit=100)
        set_usage(org_id, "2025-03", 99)

        first = ledger.try_debit(org_id, "2025-03", 1)
        assert first.admitted is True
        assert first.used == 100

        second = ledger.try_debit(org_id, "2025-03", 1)
        assert second.admitted is False
        assert second.used == 100

        assert ledger.get_usage(org_id, "2025-03").used == 100

    def test_first_debit_creates_counter(self, ledger, make_org):
        org_id = make_org("org_new")

        result = ledger.try_debit(org_id, "2025-03", 1)

        assert result.admitted is True
        assert result.used == 1

    def test_plan_quota_applies_without_override(self, ledger, make_org, set_usage):
        """Free plan quota from the plan table when the org has no override"""
        org_id = make_org("org_free", plan_code="free", quota_limit=None)
        set_usage(org_id, "2025-03", 10)

        result = ledger.try_debit(org_id, "2025-03", 1)

        assert result.admitted is False
        assert ledger.get_usage(org_id, "2025-03") == (10, 10)

    def test_amount_larger_than_headroom_is_rejected_whole(self, ledger, make_org, set_usage):
        org_id = make_org("org_b", plan_code="pro", quota_limit=10)
        set_usage(org_id, "2025-03", 8)

        result = ledger.try_debit(org_id, "2025-03", 3)

        assert result.admitted is False
        assert result.used == 8

    def test_zero_limit_rejects_everything(self, ledger, make_org):
        org_id = make_org("org_zero", quota_limit=0)

        result = ledger.try_debit(org_id, "2025-03", 1)

        assert result.admitted is False
        assert result.used == 0

    def test_periods_are_independent(self, ledger, make_org, set_usage):
        """Debits in 2025-02 never touch the closed 2025-01 counter"""
        org_id = make_org("org_c", plan_code="pro", quota_limit=5)
        set_usage(org_id, "2025-01", 5)

        assert ledger.try_debit(org_id, "2025-01", 1).admitted is False
        for _ in range(5):
            assert ledger.try_debit(org_id, "2025-02", 1).admitted is True
        assert ledger.try_debit(org_id, "2025-02", 1).admitted is False

        assert ledger.get_usage(org_id, "2025-01").used == 5
        assert ledger.get_usage(org_id, "2025-02").used == 5

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True, "1"])
    def test_invalid_amount(self, ledger, make_org, amount):
        org_id = make_org("org_d")
        with pytest.raises(ValueError):
            ledger.try_debit(org_id, "2025-03", amount)

    def test_unknown_org_is_rejected_by_the_store(self, ledger):
        with pytest.raises(IntegrityError):
            ledger.try_debit("org_missing", "2025-03", 1)

    def test_get_usage_without_counter(self, ledger, make_org):
        org_id = make_org("org_e", plan_code="pro")

        snapshot = ledger.get_usage(org_id, "2025-03")

        assert snapshot.used == 0
        assert snapshot.limit == 500

    def test_debit_metrics(self, ledger, make_org):
        org_id = make_org("org_f", quota_limit=1)

        ledger.try_debit(org_id, "2025-03", 1)
        ledger.try_debit(org_id, "2025-03", 1)

        metrics = get_metrics_collector()
        assert metrics.get_counter("usage_debits_total", {"result": "admitted"}) == 1
        assert metrics.get_counter("usage_debits_total", {"result": "rejected"}) == 1


class TestConcurrentDebits:
    """Concurrent debits never over-admit"""

    def test_parallel_debits_admit_exactly_the_headroom(self, make_org, set_usage):
        org_id = make_org("org_race", plan_code="pro", quota_limit=10)
        set_usage(org_id, "2025-03", 0)

        results = []
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(20)

        def worker():
            session = SessionLocal()
            try:
                barrier.wait()
                result = UsageLedger(session).try_debit(org_id, "2025-03", 1)
                with lock:
                    results.append(result)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sum(1 for r in results if r.admitted) == 10
        assert max(r.used for r in results) == 10

        session = SessionLocal()
        try:
            assert UsageLedger(session).get_usage(org_id, "2025-03").used == 10
        finally:
            session.close()
