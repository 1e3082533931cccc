from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Hugging Face Inference API
    huggingface_api_key: str = ""
    huggingface_api_url: str = "https://api-inference.huggingface.co/models"

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 3000

    # CORS
    allowed_origins: str = "*"  # comma-separated, e.g. "https://app.example.com,https://admin.example.com"

    # Per-client rate limit
    rate_limit_window_ms: int = 60_000
    rate_limit_quota: int = 10

    # Input validation
    max_input_length: int = 4000

    # Dispatch: timeout grows with the attempt index
    base_timeout_seconds: float = 30.0
    timeout_increment_seconds: float = 15.0

    # Dispatch: retry & failover
    max_attempts_per_backend: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 10.0
    failover_delay_seconds: float = 0.5

    # Recovery probe
    failure_threshold: int = 5
    recovery_attempt_cap: int = 3
    recovery_cooldown_seconds: float = 300.0
    probe_timeout_seconds: float = 10.0

    # Response normalization
    min_viable_length: int = 10

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable

    @property
    def rate_limit_window_seconds(self) -> float:
        return self.rate_limit_window_ms / 1000.0


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.rate_limit_quota < 1:
        errors.append("RATE_LIMIT_QUOTA must be at least 1")

    if settings.max_attempts_per_backend < 1:
        errors.append("MAX_ATTEMPTS_PER_BACKEND must be at least 1")

    if settings.backoff_max_seconds < settings.backoff_base_seconds:
        errors.append("BACKOFF_MAX_SECONDS must not be lower than BACKOFF_BASE_SECONDS")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
