"""Shared pytest fixtures for all test suites."""

import pytest

from backend.app.config import Settings
from tests.helpers import build_test_settings


@pytest.fixture
def test_settings() -> Settings:
    """Default isolated settings."""
    return build_test_settings()
