# app/core/config.py
"""
Application settings loaded from environment variables (and .env).
"""
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

DATA_DIR = os.path.join(os.path.dirname(__file__), "..", "..", "data")
DEFAULT_DATABASE_FILE = os.path.join(DATA_DIR, "db", "complaints.sqlite")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "development"
    secret_key: Optional[str] = None

    # Sync URL; the async engine derives its own driver from it
    database_url: str = f"sqlite:///{DEFAULT_DATABASE_FILE}"

    allowed_origins: str = "http://localhost:8000"
    allowed_hosts: str = "localhost,127.0.0.1,testserver"

    # Complaint lifecycle
    otp_length: int = 4
    ticket_code_attempts: int = 10
    otp_verify_rate_limit: str = "5/minute"
    rate_limit_enabled: bool = True

    # Collaborators
    notify_webhook_url: Optional[str] = None
    notify_timeout: float = 3.0
    upload_dir: str = "uploads"

    # Analytics
    analytics_page_size: int = 500
    top_engineers_limit: int = 5

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("sqlite:"):
            return "sqlite+aiosqlite:" + self.database_url[len("sqlite:"):]
        # postgresql+psycopg serves both the sync and the async engine
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
