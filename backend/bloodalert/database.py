from __future__ import annotations

from pathlib import Path
from typing import List

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo.errors import ConfigurationError


BASE_DIR = Path(__file__).resolve().parents[1]
ENV_FILES = [BASE_DIR / ".env.local", BASE_DIR / ".env"]


class Settings(BaseSettings):
    mongodb_url: str = "mongodb://localhost:27017/blood_shortage_system"
    jwt_secret: str = "supersecret"
    jwt_algorithm: str = "HS256"
    jwt_expires_min: int = 60
    bcrypt_rounds: int = 12
    mongo_server_timeout_ms: int = 2000
    mongo_connect_timeout_ms: int = 2000
    mongo_socket_timeout_ms: int = 2000
    twilio_sid: str | None = None
    twilio_token: str | None = None
    twilio_phone: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    email_from: str = "alerts@bloodalert.local"
    # Log instead of delivering on channels that have no credentials.
    notification_mock_mode: bool = True
    notification_send_timeout_s: float = 10.0
    match_candidate_limit: int = 500
    dispatch_concurrency: int = 10
    expiry_sweep_interval_s: int = 300
    alert_write_attempts: int = 3
    frontend_url: str = "http://localhost:5173"
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:5173"]

    model_config = SettingsConfigDict(
        env_file=[str(path) for path in ENV_FILES],
        case_sensitive=False,
        env_prefix="",
    )


def get_settings() -> Settings:
    return Settings()


settings = get_settings()

DEFAULT_DATABASE = "blood_shortage_system"
LOCAL_MONGO_URL = f"mongodb://localhost:27017/{DEFAULT_DATABASE}"


def create_database(config: Settings) -> AsyncIOMotorDatabase:
    """Client for ``config.mongodb_url``; falls back to a local server when SRV lookup fails."""
    options = {
        "serverSelectionTimeoutMS": config.mongo_server_timeout_ms,
        "connectTimeoutMS": config.mongo_connect_timeout_ms,
        "socketTimeoutMS": config.mongo_socket_timeout_ms,
        "tz_aware": True,
    }
    try:
        client = AsyncIOMotorClient(config.mongodb_url, **options)
    except ConfigurationError as exc:
        if config.mongodb_url == LOCAL_MONGO_URL:
            raise
        logger.warning(
            "MongoDB DNS resolution failed for {} ({}). Falling back to local Mongo at {}.",
            config.mongodb_url,
            exc,
            LOCAL_MONGO_URL,
        )
        client = AsyncIOMotorClient(LOCAL_MONGO_URL, **options)
    return client.get_default_database(default=DEFAULT_DATABASE)
