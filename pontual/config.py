from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "pontual"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default=APP_NAME, description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")

    # ---------------- Storage ----------------
    database_url: str = Field(default="sqlite:///./pontual.db")
    storage_backend: str = Field(
        default="sqlite", description="One of: sqlite, postgres, memory"
    )

    # ---------------- Auth ----------------
    secret_key: str = Field(default="dev-secret-change-me")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_hours: int = Field(default=24)
    reset_token_ttl_hours: int = Field(default=1)

    # ---------------- HTTP ----------------
    allowed_origins: str = Field(default="", description="Comma separated CORS origins")

    # ---------------- Timers ----------------
    min_session_seconds: int = Field(default=60)

    # ---------------- WhatsApp ----------------
    whatsapp_timeout_seconds: float = Field(default=10.0)

    # ---------------- Logging ----------------
    logging_level: str = Field(default="INFO")
    logging_format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> - <level>{message}</level> | {extra}",
    )

    def origins(self) -> List[str]:
        return [o.strip() for o in (self.allowed_origins or "").split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Retrieve application settings."""
    return Settings()
