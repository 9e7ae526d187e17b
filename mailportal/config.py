import os
import warnings
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./mailportal.db")

# Frontend base URL for CORS
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Security - CRITICAL: No default secrets in production
JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    warnings.warn(
        "JWT_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    JWT_SECRET = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = "HS256"

# Master key for SMTP password encryption (stretched with scrypt, never used as a raw key)
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY")
if not ENCRYPTION_KEY:
    warnings.warn(
        "ENCRYPTION_KEY not set! SMTP passwords use an insecure default key", RuntimeWarning, stacklevel=2
    )
    ENCRYPTION_KEY = "default-key-change-in-production"  # noqa: S105 - Dev fallback only

# Attachment staging
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", "10485760"))  # 10MB default

# SMTP timeouts in seconds (send / connection test)
SMTP_TIMEOUT_SECONDS = float(os.getenv("SMTP_TIMEOUT_SECONDS", "30"))
SMTP_VERIFY_TIMEOUT_SECONDS = float(os.getenv("SMTP_VERIFY_TIMEOUT_SECONDS", "10"))

# Fallback relay used when a user has no SMTP account at all
DEFAULT_SMTP_HOST = os.getenv("DEFAULT_SMTP_HOST", "smtp.gmail.com")
DEFAULT_SMTP_PORT = int(os.getenv("DEFAULT_SMTP_PORT", "587"))
DEFAULT_SMTP_SECURE = os.getenv("DEFAULT_SMTP_SECURE", "false").lower() == "true"
DEFAULT_SMTP_USER = os.getenv("DEFAULT_SMTP_USER", "")
DEFAULT_SMTP_PASS = os.getenv("DEFAULT_SMTP_PASS", "")
DEFAULT_SMTP_FROM = os.getenv("DEFAULT_SMTP_FROM")


class Settings(BaseModel):
    """Process-wide configuration, built once and handed to the services that need it."""

    model_config = ConfigDict(frozen=True)

    encryption_key: str
    upload_dir: str = "./uploads"
    max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)
    smtp_timeout_seconds: float = 30.0
    smtp_verify_timeout_seconds: float = 10.0

    default_smtp_host: str = "smtp.gmail.com"
    default_smtp_port: int = 587
    default_smtp_secure: bool = False
    default_smtp_user: str = ""
    default_smtp_password: str = Field(default="", repr=False)
    default_smtp_from: Optional[str] = None


@lru_cache
def get_settings() -> Settings:
    return Settings(
        encryption_key=ENCRYPTION_KEY,
        upload_dir=UPLOAD_DIR,
        max_file_size=MAX_FILE_SIZE,
        smtp_timeout_seconds=SMTP_TIMEOUT_SECONDS,
        smtp_verify_timeout_seconds=SMTP_VERIFY_TIMEOUT_SECONDS,
        default_smtp_host=DEFAULT_SMTP_HOST,
        default_smtp_port=DEFAULT_SMTP_PORT,
        default_smtp_secure=DEFAULT_SMTP_SECURE,
        default_smtp_user=DEFAULT_SMTP_USER,
        default_smtp_password=DEFAULT_SMTP_PASS,
        default_smtp_from=DEFAULT_SMTP_FROM,
    )
