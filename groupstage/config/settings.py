"""
Engine Settings

Centralized, environment-driven configuration for the progression engine.
All values are loaded once from environment variables (see .env.example).
"""
import os

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on bad input."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# Accepted values for SCHEDULE_DEFAULT_TIME
SCHEDULE_TIME_UNSET = "unset"
SCHEDULE_TIME_NOW = "now"


class Settings:
    """
    Runtime settings for the application.

    To add a new setting:
    1. Add it here as a class property
    2. Load it from an environment variable
    3. Read it through `settings`
    """

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./groupstage.db")

    # Identity tokens are issued by the external identity service
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = get_int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 60)

    # Match slots created without a time: "unset" keeps NULL, "now" stamps creation time
    SCHEDULE_DEFAULT_TIME: str = os.getenv("SCHEDULE_DEFAULT_TIME", SCHEDULE_TIME_UNSET).lower()
    SCHEDULE_DEFAULT_VENUE: str = os.getenv("SCHEDULE_DEFAULT_VENUE", "Online")
    SCHEDULE_DEFAULT_DURATION_MINUTES: int = get_int_env("SCHEDULE_DEFAULT_DURATION_MINUTES", 30)

    # Qualification policy used when the host has not saved one for a round
    DEFAULT_TEAMS_PER_GROUP_TO_QUALIFY: int = get_int_env("DEFAULT_TEAMS_PER_GROUP_TO_QUALIFY", 2)
    DEFAULT_NEXT_ROUND_TEAMS_PER_GROUP: int = get_int_env("DEFAULT_NEXT_ROUND_TEAMS_PER_GROUP", 2)

    RATE_LIMIT_DEFAULT: str = os.getenv("RATE_LIMIT_DEFAULT", "120/minute")
    RATE_LIMIT_ENABLED: bool = get_bool_env("RATE_LIMIT_ENABLED", True)

    @classmethod
    def schedule_defaults_to_now(cls) -> bool:
        return cls.SCHEDULE_DEFAULT_TIME == SCHEDULE_TIME_NOW

    @classmethod
    def get_all_settings(cls) -> dict:
        """Get all settings except secrets and the connection string."""
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper() and "SECRET" not in key and key != "DATABASE_URL"
        }


# Global instance
settings = Settings()
