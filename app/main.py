import logging

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.api.admin import router as admin_router
from app.api.dependencies import TransactionLocks
from app.api.flows import router as flows_router
from app.core.config import Settings, settings
from app.db.deps import get_db
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.services.drop_off_detector import DropOffConfig, DropOffDetector
from app.services.flow_orchestrator import FlowConfig, FlowOrchestrator
from app.services.telemetry import TelemetryLog
from app.services.telemetry_sink import DatabaseTelemetrySink

logger = logging.getLogger(__name__)


def build_orchestrator(config: Settings, session_factory=None) -> FlowOrchestrator:
    """
    Wire the engines from settings.

    The durable sink is subscribed only when telemetry_sink_enabled is set.
    """
    telemetry = TelemetryLog(max_events=config.telemetry_log_max_events)
    if config.telemetry_sink_enabled:
        if session_factory is None:
            from app.db import session as db_session

            session_factory = db_session.SessionLocal
        telemetry.subscribe(DatabaseTelemetrySink(session_factory))

    return FlowOrchestrator(
        config=FlowConfig.from_settings(config),
        telemetry=telemetry,
        drop_off_detector=DropOffDetector(DropOffConfig.from_settings(config)),
    )


def validate_settings(config: Settings) -> None:
    """Fail fast on configuration that cannot run safely."""
    errors = []
    if config.app_env == "production" and not config.admin_api_key:
        errors.append(
            "ADMIN_API_KEY is required in production. "
            "Set ADMIN_API_KEY environment variable with a strong random key."
        )
    if config.telemetry_sink_enabled and not config.database_url:
        errors.append(
            "DATABASE_URL is required when TELEMETRY_SINK_ENABLED=true. "
            "Set DATABASE_URL or disable the telemetry sink."
        )
    if errors:
        error_message = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        logger.error(error_message)
        raise RuntimeError(error_message)


app = FastAPI(title="Booking Conversion Engine")

app.add_middleware(RateLimitMiddleware, rate_limited_paths=["/admin"])
app.add_middleware(CorrelationIdMiddleware)

app.state.orchestrator = build_orchestrator(settings)
app.state.transaction_locks = TransactionLocks()


@app.on_event("startup")
async def startup_event():
    """Run startup checks and validation."""
    validate_settings(settings)

    if settings.telemetry_sink_enabled:
        from app.db import session as db_session
        from app.db.base import Base
        import app.db.models  # noqa: F401

        Base.metadata.create_all(bind=db_session.engine)

    logger.info(
        "Startup: Configuration loaded - "
        f"Environment: {settings.app_env}, "
        f"Trust injection: {settings.enable_trust_injection}, "
        f"Drop-off detection: {settings.enable_drop_off_detection}, "
        f"Conversion hooks: {settings.enable_conversion_hooks}, "
        f"Telemetry sink: {settings.telemetry_sink_enabled}"
    )


@app.get("/health")
def health():
    """Basic health check with engine switch visibility."""
    return {
        "ok": True,
        "environment": settings.app_env,
        "features": {
            "telemetry_enabled": settings.enable_telemetry,
            "trust_injection_enabled": settings.enable_trust_injection,
            "drop_off_detection_enabled": settings.enable_drop_off_detection,
            "conversion_hooks_enabled": settings.enable_conversion_hooks,
            "telemetry_sink_enabled": settings.telemetry_sink_enabled,
        },
    }


@app.get("/ready")
def ready(db: Session = Depends(get_db)):
    """
    Readiness check - verifies database connectivity for the telemetry sink.

    With the sink disabled nothing writes to the database, so it is not probed.
    Returns 200 if ready, 503 if the sink database is unreachable.
    """
    if not settings.telemetry_sink_enabled:
        return {"ok": True, "database": "disabled"}
    try:
        db.execute(text("SELECT 1"))
        return {"ok": True, "database": "connected"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "database": "disconnected", "error": str(e)},
        )


app.include_router(flows_router, prefix="/flows", tags=["flows"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
