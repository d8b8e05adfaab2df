"""
Configuration Management

This module handles all application configuration using environment variables.
Values are read once per process after loading a local .env file.
"""

import os
from functools import lru_cache
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _read_int(name: str, default: str) -> int:
    """
    Read an integer environment variable, tolerating trailing comments.

    Args:
        name: Environment variable name
        default: Value used when the variable is unset

    Returns:
        int: Parsed value
    """
    raw = os.getenv(name, default)
    try:
        return int(raw.split('#')[0].strip())
    except ValueError as e:
        raise ValueError(f"Invalid {name} value: '{raw}'. Must be a number without comments.") from e


class Settings:
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    """

    def __init__(self):
        # Telegram Bot Configuration
        self.telegram_bot_token: str = os.getenv('TELEGRAM_BOT_TOKEN', '')

        # Database Configuration
        self.database_url: str = os.getenv('DATABASE_URL', 'sqlite:///matrix_game.db')

        # Application Settings
        self.debug: bool = os.getenv('DEBUG', 'false').lower() == 'true'
        self.log_level: str = os.getenv('LOG_LEVEL', 'INFO')
        self.environment: str = os.getenv('ENVIRONMENT', 'development')

        # Timeout worker
        self.enable_timeout_worker: bool = os.getenv('ENABLE_TIMEOUT_WORKER', 'true').lower() == 'true'
        self.timeout_check_interval_seconds: int = _read_int('TIMEOUT_CHECK_INTERVAL_SECONDS', '300')
        if self.timeout_check_interval_seconds <= 0:
            raise ValueError(
                f"Invalid TIMEOUT_CHECK_INTERVAL_SECONDS value: '{self.timeout_check_interval_seconds}'. Must be positive."
            )

        # Game defaults
        self.default_argument_limit: int = _read_int('DEFAULT_ARGUMENT_LIMIT', '3')
        self.npc_user_id: int = _read_int('NPC_USER_ID', '0')
        self.placeholder_argument_text: str = os.getenv(
            'PLACEHOLDER_ARGUMENT_TEXT', '[No argument submitted - timed out]'
        )

        # Optional chat that receives operational notices when a game has no chat
        fallback_chat = os.getenv('FALLBACK_CHAT_ID')
        self.fallback_chat_id: Optional[int] = int(fallback_chat) if fallback_chat else None


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings with caching.

    Uses LRU cache to avoid reloading settings on every call.
    Cache is cleared when the process restarts.

    Returns:
        Settings: Application configuration settings
    """
    return Settings()


def is_development() -> bool:
    """
    Check if running in development environment.

    Returns:
        bool: True if in development, False otherwise
    """
    settings = get_settings()
    return settings.environment.lower() in ["development", "dev", "local"]

