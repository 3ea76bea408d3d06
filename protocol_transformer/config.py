"""
Configuration Management Module

Configures transformer defaults via environment variables or .env file.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Transformer Configuration Class

    All configuration items can be overridden by environment variables named
    after the fields (uppercase) with a TRANSFORMER_ prefix.
    """

    # Logging Config
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # Anthropic Config
    # max_tokens sent upstream when the caller did not set one
    DEFAULT_MAX_TOKENS: int = 8192

    # Reasoning Config
    # Thinking budget used for each qualitative reasoning effort
    REASONING_EFFORT_BUDGETS: dict[str, int] = {
        "low": 5000,
        "medium": 15000,
        "high": 30000,
    }
    # Upper bound (inclusive) of each effort bucket when mapping a budget back to an effort
    REASONING_BUDGET_THRESHOLDS: dict[str, int] = {
        "low": 5000,
        "medium": 15000,
    }
    # Budget used for efforts missing from REASONING_EFFORT_BUDGETS
    DEFAULT_REASONING_BUDGET: int = 15000

    # Gemini Config
    # Largest thinkingBudget accepted by Gemini
    GEMINI_MAX_THINKING_BUDGET: int = 24576

    model_config = SettingsConfigDict(
        env_prefix="TRANSFORMER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get configuration singleton

    Uses lru_cache to ensure configuration is loaded only once.

    Returns:
        Settings: Configuration object
    """
    return Settings()
