"""Application configuration contract."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CAPABILITY_VOCABULARY = (
    "google-gmail,slack,discord,google-sheets,github,google-drive,google-forms"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    app_db: str = Field(alias="APP_DB", default="/tmp/agentsmith.db")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    planner_base_url: str = Field(alias="PLANNER_BASE_URL", default="https://api.openai.com/v1")
    planner_api_key: str = Field(alias="PLANNER_API_KEY", default="")
    planner_model: str = Field(alias="PLANNER_MODEL", default="gpt-4o")
    planner_timeout_seconds: int = Field(alias="PLANNER_TIMEOUT_SECONDS", default=60)
    clarifier_model: str = Field(alias="CLARIFIER_MODEL", default="gpt-4o-mini")

    agent_default_model: str = Field(alias="AGENT_DEFAULT_MODEL", default="gpt-4o")
    agent_default_max_steps: int = Field(alias="AGENT_DEFAULT_MAX_STEPS", default=10)
    build_pacing_seconds: float = Field(alias="BUILD_PACING_SECONDS", default=0.4)
    poll_interval_seconds: int = Field(alias="POLL_INTERVAL_SECONDS", default=60)
    schedule_timezone: str = Field(alias="SCHEDULE_TIMEZONE", default="UTC")
    schedule_lookahead_days: int = Field(alias="SCHEDULE_LOOKAHEAD_DAYS", default=366)
    capability_vocabulary: str = Field(
        alias="CAPABILITY_VOCABULARY", default=DEFAULT_CAPABILITY_VOCABULARY
    )

    task_runner_max_concurrent: int = Field(alias="TASK_RUNNER_MAX_CONCURRENT", default=20)
    task_runner_shutdown_timeout_seconds: int = Field(
        alias="TASK_RUNNER_SHUTDOWN_TIMEOUT_SECONDS",
        default=30,
    )

    web_auth_token_ttl_hours: int = Field(alias="WEB_AUTH_TOKEN_TTL_HOURS", default=720)
    web_cors_origins: str = Field(alias="WEB_CORS_ORIGINS", default="http://localhost:3000")
    web_auth_setup_password: str = Field(alias="WEB_AUTH_SETUP_PASSWORD", default="")

    # Security: bind host defaults to loopback
    bind_host: str = Field(alias="BIND_HOST", default="127.0.0.1")
    bind_port: int = Field(alias="BIND_PORT", default=8000)

    rate_limit_pipeline_per_minute: int = Field(
        alias="RATE_LIMIT_PIPELINE_PER_MINUTE", default=20
    )

    def capability_names(self) -> list[str]:
        return [item.strip() for item in self.capability_vocabulary.split(",") if item.strip()]


def validate_settings_for_env(settings: Settings) -> None:
    import logging as _logging
    import warnings

    _logger = _logging.getLogger(__name__)

    if settings.app_env == "prod" and settings.bind_host == "0.0.0.0":
        msg = (
            "SECURITY WARNING: BIND_HOST=0.0.0.0 in production. "
            "This exposes the API to all network interfaces. "
            "Set BIND_HOST=127.0.0.1 and use a reverse proxy."
        )
        _logger.warning(msg)
        warnings.warn(msg, stacklevel=2)

    if settings.app_env != "prod":
        return

    missing: list[str] = []
    required_non_empty = {
        "APP_DB": settings.app_db,
        "PLANNER_BASE_URL": settings.planner_base_url,
        "PLANNER_API_KEY": settings.planner_api_key,
        "PLANNER_MODEL": settings.planner_model,
        "CLARIFIER_MODEL": settings.clarifier_model,
        "WEB_AUTH_SETUP_PASSWORD": settings.web_auth_setup_password,
    }
    for key, value in required_non_empty.items():
        if not value.strip():
            missing.append(key)

    if not settings.app_db.startswith("/"):
        missing.append("APP_DB(absolute path required)")
    if not settings.capability_names():
        missing.append("CAPABILITY_VOCABULARY")

    if missing:
        keys = ", ".join(sorted(set(missing)))
        raise ValueError(f"invalid production configuration: {keys}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
