from collections.abc import Generator

from sqlalchemy.orm import Session

from app.db import session as db_session


def get_db() -> Generator[Session, None, None]:
    # Resolved at call time so tests can swap SessionLocal
    db = db_session.SessionLocal()
    try:
        yield db
    finally:
        db.close()
