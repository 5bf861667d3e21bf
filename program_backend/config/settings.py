"""
Settings and feature flags

Centralized configuration for the backend.
Values are loaded from environment variables (after .env).
"""
import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_float_env(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Settings:
    """
    Runtime settings for the program platform.

    To add a new setting:
    1. Add it here as a class attribute
    2. Load it from an environment variable
    3. Import `settings` where it is needed
    """

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./programs.db")

    # Auth (tokens are issued elsewhere, we only verify them)
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    ALLOWED_ORIGINS: List[str] = [
        origin.strip() for origin in os.getenv("ALLOWED_ORIGINS", "").split(",") if origin.strip()
    ]

    # AI evaluation
    AI_EVALUATION_MODEL: str = os.getenv("AI_EVALUATION_MODEL", "llama-3.3-70b-versatile")
    AI_EVALUATION_TEMPERATURE: float = get_float_env("AI_EVALUATION_TEMPERATURE", 0.2)
    AI_EVALUATION_MAX_TOKENS: int = int(get_float_env("AI_EVALUATION_MAX_TOKENS", 2000))
    AI_EVALUATION_TIMEOUT_SECONDS: float = get_float_env("AI_EVALUATION_TIMEOUT_SECONDS", 60.0)
    DEFAULT_LOCALE: str = os.getenv("DEFAULT_LOCALE", "es-ES")
    AI_EVALUATION_RATE_LIMIT: str = os.getenv("AI_EVALUATION_RATE_LIMIT", "20/minute")

    # Feature flags
    FEATURE_EVALUATION_VERSION_CHECK: bool = get_bool_env('FEATURE_EVALUATION_VERSION_CHECK', True)

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @staticmethod
    def groq_api_key():
        return os.getenv("GROQ_API_KEY")

    @staticmethod
    def gemini_api_key():
        return os.getenv("GEMINI_API_KEY")

    @classmethod
    def get_all_flags(cls) -> dict:
        """Get all feature flags as a dictionary."""
        return {
            key: value
            for key, value in cls.__dict__.items()
            if key.startswith('FEATURE_') and isinstance(value, bool)
        }


# Singleton instance for easy importing
settings = Settings()
