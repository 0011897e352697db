from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "petcare-scheduler"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    INTERNAL_PREFIX: str = "/internal/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000,http://localhost:8081"
    # Empty falls back to the level in logging_config.json
    LOG_LEVEL: str = ""
    LOG_TO_FILE: bool = True

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./petcare.db"
    DATABASE_ECHO: bool = False
    DATABASE_CREATE_TABLES: bool = False

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Expo Push
    EXPO_PUSH_API_URL: str = "https://exp.host/--/api/v2/push/send"
    EXPO_ACCESS_TOKEN: str = ""
    PUSH_BATCH_SIZE: int = 100
    PUSH_MAX_ATTEMPTS: int = 3
    PUSH_BACKOFF_BASE_SECONDS: float = 1.0
    PUSH_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Internal endpoints & scheduler
    INTERNAL_API_KEY: str = ""
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_TIMEZONE: str = "UTC"
    SCHEDULER_SHUTDOWN_GRACE_SECONDS: float = 30.0

    # Reminder engine
    EVENT_REMINDER_WINDOW_DAYS: int = 7
    REMINDER_TICK_MINUTES: int = 15
    FEEDING_REMINDER_BATCH_LIMIT: int = 100
    FEEDING_REMINDER_MAX_RETRIES: int = 3

    # User preference defaults
    DEFAULT_TIMEZONE: str = "UTC"
    DEFAULT_LANGUAGE: str = "en"
    DEFAULT_EVENT_TIME: str = "09:00"
    DEFAULT_BASE_CURRENCY: str = "TRY"

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @property
    def redis_url(self) -> str:
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
