from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Occasion Notifier"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = ""  # empty: level from logging_config.json

    # Database
    DATABASE_URL: str = "sqlite:///./occasion_notifier.db"
    STORE_TIMEOUT_SECONDS: int = 15

    # Calendar & messaging
    LOCAL_TIMEZONE: str = "Asia/Kolkata"
    BROADCAST_TOPIC: str = "festivals"
    ORGANIZATION_NAME: str = "ISKCON Vesu"
    MALE_NAME_SUFFIX: str = "Prabhu"
    FEMALE_NAME_SUFFIX: str = "Mataji"
    BROADCAST_NAME_LIMIT: int = 8

    # Firebase Cloud Messaging
    FIREBASE_CREDENTIALS_PATH: str = ""
    FIREBASE_APP_NAME: str = "occasion-notifier"
    PUSH_TIMEOUT_SECONDS: int = 15

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("STORE_TIMEOUT_SECONDS", "PUSH_TIMEOUT_SECONDS")
    def check_timeout_range(cls, v: int) -> int:
        if not 10 <= v <= 20:
            raise ValueError("timeouts must be between 10 and 20 seconds")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
