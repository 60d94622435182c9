import os

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ["APP_ENV"] = "dev"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")  # Disable rate limiting in tests
os.environ.setdefault("TELEMETRY_SINK_ENABLED", "false")

from app.core.config import settings
from app.db.base import Base
from app.db.deps import get_db
import app.db.models as _models  # noqa: F401
from app.api.dependencies import TransactionLocks
from app.main import app, build_orchestrator
from app.services.drop_off_detector import DropOffDetector
from app.services.flow_orchestrator import FlowConfig, FlowOrchestrator
from app.services.telemetry import TelemetryLog
from app.services.trust_triggers import TrustTriggerResolver
from tests.helpers.clock import FakeClock
from tests.helpers.db import TestingSessionLocal, engine

# Make the app (and the telemetry sink) use the same in-memory DB
import app.db.session as _db_session

_db_session.engine = engine
_db_session.SessionLocal = TestingSessionLocal


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db):
    """Session factory bound to the same engine as the db fixture."""
    return TestingSessionLocal


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def telemetry():
    return TelemetryLog()


@pytest.fixture
def detector(clock):
    return DropOffDetector(clock=clock)


@pytest.fixture
def orchestrator(clock, telemetry, detector):
    """Orchestrator with default config, default rule tables and a fake clock."""
    return FlowOrchestrator(
        config=FlowConfig(),
        telemetry=telemetry,
        drop_off_detector=detector,
        trust_resolver=TrustTriggerResolver(clock=clock),
        clock=clock,
    )


@pytest.fixture(scope="function")
def client(db):
    """Test client with a fresh orchestrator and the test database."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.state.orchestrator = build_orchestrator(settings)
    app.state.transaction_locks = TransactionLocks()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
