"""
Unit Tests for configuration and logging setup
"""

import logging

import pytest

from protocol_transformer.config import get_settings
from protocol_transformer.logging_config import setup_logging


@pytest.fixture
def package_logger():
    logger = logging.getLogger("protocol_transformer")
    saved = (logger.level, list(logger.handlers), logger.propagate)
    yield logger
    logger.setLevel(saved[0])
    logger.handlers[:] = saved[1]
    logger.propagate = saved[2]


class TestSettings:
    """Environment driven settings"""

    def test_defaults(self):
        settings = get_settings()
        assert settings.DEFAULT_MAX_TOKENS == 8192
        assert settings.REASONING_EFFORT_BUDGETS == {"low": 5000, "medium": 15000, "high": 30000}
        assert settings.GEMINI_MAX_THINKING_BUDGET == 24576

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("TRANSFORMER_DEFAULT_MAX_TOKENS", "4096")
        get_settings.cache_clear()
        assert get_settings().DEFAULT_MAX_TOKENS == 4096

    def test_cached(self):
        assert get_settings() is get_settings()


class TestLogging:
    """setup_logging"""

    def test_level_argument(self, package_logger):
        setup_logging("WARNING")
        assert package_logger.level == logging.WARNING
        assert not package_logger.propagate

    def test_debug_flag(self, package_logger, monkeypatch):
        monkeypatch.setenv("TRANSFORMER_DEBUG", "true")
        get_settings.cache_clear()
        setup_logging()
        assert package_logger.level == logging.DEBUG
