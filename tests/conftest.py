"""Shared test configuration."""

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo logging configuration done by CLI commands under test."""
    yield
    structlog.reset_defaults()
