from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(default="development", validation_alias="APP_ENV")

    database_url: str = Field(
        default="sqlite+pysqlite:///./portal.db",
        validation_alias="DATABASE_URL",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias="REDIS_URL",
    )
    redis_socket_timeout_seconds: float = Field(default=1.0, validation_alias="REDIS_SOCKET_TIMEOUT_SECONDS")

    cors_allow_origins: str = Field(default="http://localhost:3000", validation_alias="CORS_ALLOW_ORIGINS")

    ai_synthesis_enabled: bool = Field(default=True, validation_alias="AI_SYNTHESIS_ENABLED")
    ai_base_url: str = Field(default="https://openrouter.ai/api/v1", validation_alias="AI_BASE_URL")
    ai_model: str = Field(default="google/gemini-2.0-flash-001", validation_alias="AI_MODEL")
    ai_api_key: str | None = Field(default=None, validation_alias="AI_API_KEY")
    ai_temperature: float = Field(default=0.4, validation_alias="AI_TEMPERATURE")

    synthesis_timeout_seconds: float = Field(default=8.0, validation_alias="SYNTHESIS_TIMEOUT_SECONDS")

    topic_duration_seconds: int = Field(default=20 * 60, validation_alias="TOPIC_DURATION_SECONDS")
    mock_duration_seconds: int = Field(default=40 * 60, validation_alias="MOCK_DURATION_SECONDS")
    game_question_seconds: int = Field(default=30, validation_alias="GAME_QUESTION_SECONDS")

    session_idle_ttl_seconds: int = Field(default=60 * 60, validation_alias="SESSION_IDLE_TTL_SECONDS")

    usage_key_ttl_seconds: int = Field(default=35 * 24 * 60 * 60, validation_alias="USAGE_KEY_TTL_SECONDS")


settings = Settings()


def _is_prod() -> bool:
    return (settings.app_env or "").strip().lower() in {"prod", "production"}


if _is_prod():
    if settings.database_url.strip() == "sqlite+pysqlite:///./portal.db":
        raise RuntimeError("DATABASE_URL must be set in production")
    if settings.redis_url.strip() == "redis://localhost:6379/0":
        raise RuntimeError("REDIS_URL must be set in production")
    if bool(settings.ai_synthesis_enabled) and not (settings.ai_api_key or "").strip():
        raise RuntimeError("AI_API_KEY must be set when AI_SYNTHESIS_ENABLED is true in production")
