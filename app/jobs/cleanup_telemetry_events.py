"""
Scheduled job for persisted telemetry retention cleanup.

Deletes telemetry_events rows older than retention_days (default TELEMETRY_RETENTION_DAYS).
Run via: python -m app.jobs.cleanup_telemetry_events [--retention-days 90]
"""

import logging
import sys

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.telemetry_sink import cleanup_old_events

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for telemetry retention cleanup."""
    import argparse

    parser = argparse.ArgumentParser(description="Clean up old telemetry events (retention)")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=settings.telemetry_retention_days,
        help=f"Delete events older than this many days (default: {settings.telemetry_retention_days})",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db = SessionLocal()
    try:
        deleted = cleanup_old_events(db, retention_days=args.retention_days)
        logger.info(f"Retention cleanup completed: deleted {deleted} events")
    except Exception as e:
        logger.error(f"Retention cleanup failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
