from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider credentials (empty = adapter reports unavailable)
    openai_api_key: str = ""
    gemini_api_key: str = ""
    deepseek_api_key: str = ""

    # Provider models
    openai_model: str = "gpt-4o-mini"
    gemini_model: str = "gemini-2.0-flash"
    deepseek_model: str = "deepseek-chat"

    # AI gateway
    ai_provider_priorities: str = "custom:1,deepseek:2,gemini:3,openai:4"  # name:priority, lower first
    ai_enabled_providers: str = "custom,deepseek,gemini,openai"  # comma-separated
    ai_zero_cost_mode: bool = True  # disables every paid provider
    ai_adapter_timeout_seconds: float = 30.0
    ai_cache_ttl_seconds: float = 300.0
    ai_cache_max_entries: int = 100
    ai_cacheable_operations: str = "generateRecommendations"  # comma-separated operation names

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated, e.g. "https://app.example.com,https://admin.example.com"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    from rentai.gateway.types import GatewayConfig

    try:
        GatewayConfig.from_settings(settings)
    except ValueError as e:
        errors.append(f"Invalid AI gateway configuration: {e}")

    if settings.ai_adapter_timeout_seconds <= 0:
        errors.append("AI_ADAPTER_TIMEOUT_SECONDS must be positive")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")
        if not settings.ai_zero_cost_mode and not any(
            (settings.openai_api_key, settings.gemini_api_key, settings.deepseek_api_key)
        ):
            errors.append("Zero-cost mode is off but no paid provider API key is set")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
