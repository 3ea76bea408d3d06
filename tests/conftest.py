"""
Test Configuration Module
"""

import pytest

from protocol_transformer.config import get_settings
from protocol_transformer.registry import build_registry


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop cached settings so each test sees its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def registry():
    """Registry with every built-in transformer and default upstreams"""
    return build_registry()
