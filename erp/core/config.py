# erp/core/config.py
import os
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from .env"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Database ===
    DATABASE_URL: str = "sqlite+aiosqlite:///./erp.db"
    DATABASE_ECHO: bool = False

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database URL is safe for current environment"""
        env = os.getenv("ENVIRONMENT", "development").lower()
        if env == "production" and ("localhost" in v or v.startswith("sqlite")):
            raise ValueError("Production environment cannot use a local database")
        return v

    # === JWT ===
    SECRET_KEY: str = "dev-secret-key-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # === CORS ===
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    ALLOWED_METHODS: List[str] = ["*"]
    ALLOWED_HEADERS: List[str] = ["*"]

    # === System ===
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # === Realtime channel ===
    REALTIME_URL: str = "ws://localhost:8000/api/v1/realtime/ws"
    REALTIME_AUTO_RECONNECT: bool = True
    REALTIME_MAX_RECONNECT_ATTEMPTS: int = 10
    REALTIME_RECONNECT_DELAY_MS: int = 1000
    REALTIME_HEARTBEAT_INTERVAL_MS: int = 30000
    REALTIME_PING_TIMEOUT_MS: int = 5000

    # === Inventory ledger ===
    ALLOW_NEGATIVE_STOCK: bool = False
    LEDGER_RETRY_ATTEMPTS: int = 3
    LEDGER_RETRY_BACKOFF_SECONDS: float = 0.05


# Create a global settings instance
settings = Settings()
