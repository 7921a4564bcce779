"""
Pytest configuration and fixtures
"""
import pytest
import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import Mock

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

_db_dir = tempfile.mkdtemp(prefix="adminer-test-")

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_db_dir}/adminer_test.db"
os.environ["RECONCILER_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests
os.environ["DODO_WEBHOOK_SECRET"] = "test-dodo-webhook-secret"
os.environ["WORKER_WEBHOOK_SECRET"] = "test-worker-webhook-secret"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token-for-the-test-suite-only"

# Import after setting env vars
from fastapi.testclient import TestClient

from adminer.app import app
from adminer.db.base import Base
from adminer.db.engine import engine, SessionLocal
from adminer.db.models import Organization, UsageCounter
from adminer.jobs_routes import get_worker
from adminer.services.metrics import get_metrics_collector
from adminer.services.plan_catalog import get_plan_catalog


@pytest.fixture(autouse=True)
def reset_database():
    """Fresh schema and plan reference data for every test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        get_plan_catalog().seed(db)
    finally:
        db.close()
    yield


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield


@pytest.fixture
def catalog():
    return get_plan_catalog()


@pytest.fixture
def db_session():
    """Database session bound to the test database"""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_org(db_session):
    """Factory inserting an organization row"""

    def _make_org(org_id="org_1", plan_code="free", quota_limit=None, **fields):
        now = datetime.utcnow()
        org = Organization(
            id=org_id,
            plan_code=plan_code,
            quota_limit=quota_limit,
            billing_status=fields.pop("billing_status", "inactive"),
            version=fields.pop("version", 1),
            created_at=now,
            updated_at=now,
            **fields,
        )
        db_session.add(org)
        db_session.commit()
        return org_id

    return _make_org


@pytest.fixture
def set_usage(db_session):
    """Factory setting the usage counter for an (org, period)"""

    def _set_usage(org_id, period, used):
        now = datetime.utcnow()
        db_session.add(UsageCounter(org_id=org_id, period=period, used=used, created_at=now, updated_at=now))
        db_session.commit()

    return _set_usage


@pytest.fixture
def mock_worker():
    """Worker client that accepts every submission"""
    worker = Mock()
    worker.submit.return_value = "run_test_123"
    return worker


@pytest.fixture
def client(mock_worker):
    """Test client with the worker platform mocked out"""
    app.dependency_overrides[get_worker] = lambda: mock_worker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def fetch():
    """
    Load a row through a short-lived session

    SQLite transactions take the write lock on BEGIN, so assertions must not
    leave a transaction open on a session other writers are waiting for.
    """

    def _fetch(model, key):
        session = SessionLocal()
        try:
            return session.get(model, key)
        finally:
            session.close()

    return _fetch
