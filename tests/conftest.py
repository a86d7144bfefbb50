"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest


# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_lspbridge_logger():
    """Drop handlers the CLI tests attach to the lspbridge logger."""
    import logging

    import lspbridge.logging as lspbridge_logging

    yield
    logger = logging.getLogger("lspbridge")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    lspbridge_logging._initialized = False
