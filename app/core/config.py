from __future__ import annotations

from pydantic import AliasChoices, Field

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_RECYCLE: int = 1800

    TRUST_PROXY_HEADERS: bool = False
    CORS_ORIGINS: str = Field(
        default="",
        validation_alias=AliasChoices("CORS_ORIGINS", "ADMIN_UI_ORIGINS"),
    )

    TICKET_NUMBER_PREFIX: str = "TKT"
    SEQUENCE_MAX_RETRIES: int = 5

    AUTO_ASSIGN_ENABLED: bool = True
    DEFAULT_MAX_ACTIVE_TICKETS: int = 20

    BULK_MAX_ITEMS: int = 100
    LIST_DEFAULT_LIMIT: int = 25
    LIST_MAX_LIMIT: int = 100


settings = Settings()
