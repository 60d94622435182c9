"""
Engine and session factory for the durable telemetry sink.

Only used when TELEMETRY_SINK_ENABLED is set (or by the retention cleanup job). Creating
the engine does not connect; the first session that runs a query does.
The booking engines themselves never touch the database.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings

DEFAULT_DATABASE_URL = "sqlite:///./telemetry.db"


def _engine_kwargs(url: str) -> dict:
    # SQLite connections are shared across threads by the TestClient / job runner
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


database_url = settings.database_url or DEFAULT_DATABASE_URL
engine = create_engine(database_url, **_engine_kwargs(database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
