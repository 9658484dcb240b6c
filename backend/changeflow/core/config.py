from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    DEBUG: bool = False
    APP_NAME: str = "changeflow"
    APP_DATABASE_DSN: str = "sqlite:////tmp/changeflow.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Cache
    CACHE_ENABLED: bool = True
    CACHE_DEFAULT_TTL_SECONDS: int = 3600

    # Live update fan-out (consumed by the websocket gateway)
    BROADCAST_CHANNEL: str = "changeflow:events"

    # Conflict detection policy
    CONFLICT_WINDOW_SECONDS: int = 300
    STALE_DATA_STRICT: bool = True  # True: stale when updated_at > _version, False: >=

    # Audit trail
    AUDIT_RECENT_LIMIT: int = 10
    AUDIT_RECENT_TTL_SECONDS: int = 3600
    ACTIVITY_COUNTER_TTL_SECONDS: int = 7 * 24 * 3600
    AUDIT_RETENTION_DAYS: int = 90

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def version(self) -> str:
        return "0.1.0"


settings = Settings()
