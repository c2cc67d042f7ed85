"""
Configuration for the Expense Tracker API.

All settings come from environment variables (or a local .env file) and are
validated once at startup through pydantic-settings.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = Field(
        default="sqlite:///./expense_tracker.db",
        description="SQLAlchemy database URL",
    )

    # Session tokens
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_hours: int = Field(default=24, ge=1)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # One-time codes and reset links
    otp_expire_minutes: int = Field(default=5, ge=1)
    reset_token_expire_minutes: int = Field(default=60, ge=1)
    client_url: str = "http://localhost:5173"

    # Outgoing mail
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    smtp_use_ssl: bool = False
    email_from: Optional[str] = None
    mail_suppress_send: bool = False

    log_level: str = "INFO"
    log_format: str = "plain"

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("plain", "json"):
            raise ValueError("LOG_FORMAT must be 'plain' or 'json'")
        return v

    @field_validator("client_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def mail_configured(self) -> bool:
        return bool(self.smtp_host and self.email_from)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
