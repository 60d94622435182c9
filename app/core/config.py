from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_assignment=True,
    )

    app_env: str = "dev"

    admin_api_key: str | None = (
        None  # Optional - if not set, admin endpoints are unprotected (dev mode)
    )

    # Orchestrator switches
    enable_telemetry: bool = True
    enable_trust_injection: bool = True
    enable_drop_off_detection: bool = True
    enable_conversion_hooks: bool = True

    # Confidence below which the trust resolver runs on a confidence update (0-100)
    trust_injection_threshold: int = 60
    default_customer_confidence: int = 70

    # Drop-off detection heuristics
    abandoned_flow_timeout_seconds: int = 300  # 5 minutes without a page visit
    bounce_check_threshold: int = 3  # Price/checkout visits before a session counts as bounced
    hesitation_timeout_seconds: int = 30  # Dwell time in a hesitation-prone stage
    confidence_drop_threshold: int = 20  # Points lost between the last two samples
    notify_on_drop_off: bool = True
    notify_on_bounce: bool = True
    notify_on_hesitation: bool = True

    # Session garbage collection (cleanup_old_sessions default)
    session_max_age_seconds: int = 24 * 60 * 60

    # Archived terminal contexts kept in memory for inspection
    archive_max_contexts: int = 1000

    # Upper bound on the shared in-memory telemetry log (oldest events dropped first)
    telemetry_log_max_events: int = 100_000

    # Durable telemetry sink (external subscriber, off by default)
    telemetry_sink_enabled: bool = False
    database_url: str | None = None
    telemetry_retention_days: int = 90

    # Rate limiting
    rate_limit_enabled: bool = True  # Enable rate limiting for admin endpoints
    rate_limit_requests: int = 10  # Number of requests allowed per window
    rate_limit_window_seconds: int = 60  # Time window in seconds


# Settings will load from environment variables or .env file
settings = Settings()
