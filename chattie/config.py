"""
Configuration for the Chattie service

Settings are read from environment variables (and an optional .env file).
Missing or invalid required settings are fatal at startup.
"""
import sys
import logging
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import EmailStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chattie.models import ResponseMode

load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "chattie"
    db_user: str = "readwrite"
    db_password: str = ""

    # AI responder
    anthropic_api_key: str
    ai_model: str = "claude-3-5-sonnet-20241022"
    ai_max_tokens: int = 500
    ai_temperature: float = 0.7

    # Business owner receives approval requests
    business_owner_email: EmailStr
    response_mode: ResponseMode = ResponseMode.APPROVAL

    # Conversation handling
    context_window: int = 20
    email_poll_interval: int = 60  # seconds
    follow_up_poll_interval: int = 300  # seconds
    follow_up_delay_days: int = 2
    max_follow_ups: int = 3

    # WhatsApp via Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_whatsapp_number: str = ""
    twilio_validate_signature: bool = False

    # WhatsApp via Unipile (preferred when an API key is set)
    unipile_dsn: str = "api1.unipile.com"
    unipile_api_key: str = ""
    unipile_account_id: str = ""

    # Business mailbox
    imap_server: str = "imap.gmail.com"
    imap_port: int = 993
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 465
    email_address: str = ""
    email_password: str = ""
    drafts_mailbox: str = "[Gmail]/Drafts"

    # Server
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("anthropic_api_key")
    @classmethod
    def require_api_key(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("ANTHROPIC_API_KEY must not be empty")
        return value

    @field_validator("business_owner_email", mode="before")
    @classmethod
    def strip_owner_email(cls, value):
        return value.strip() if isinstance(value, str) else value

    @property
    def sqlalchemy_url(self) -> str:
        """Database URL, built from the DB_* settings when DATABASE_URL is unset"""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def email_configured(self) -> bool:
        return bool(self.email_address and self.email_password)

    @property
    def use_unipile(self) -> bool:
        return bool(self.unipile_api_key)


@lru_cache
def get_settings() -> Settings:
    """
    Get settings instance from environment variables.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required settings are missing or invalid
    """
    return Settings()


def load_settings_or_exit() -> Settings:
    """Load settings, terminating the process when they are invalid"""
    try:
        return get_settings()
    except ValidationError as e:
        logger.critical(f"Invalid environment configuration:\n{e}")
        sys.exit(1)
