"""Environment-driven settings for the exam portal."""

import os

from dotenv import load_dotenv

load_dotenv()  # loads .env if present


class Settings:
    # Prefer an explicit DATABASE_URL; default to a file-based SQLite database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./exam_portal.db")

    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-please-change")

    # Role policy cache lifetime (5 minutes)
    PERMISSION_CACHE_TTL_SECONDS = int(os.getenv("PERMISSION_CACHE_TTL_SECONDS", "300"))

    # Only used to render times in user-facing messages
    EXAM_DISPLAY_TIMEZONE = os.getenv("EXAM_DISPLAY_TIMEZONE", "Asia/Ho_Chi_Minh")

    DEFAULT_ADMIN_USERNAME = os.getenv("DEFAULT_ADMIN_USERNAME", "admin")
    DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123")

    # bcrypt cost factor for new password hashes
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
