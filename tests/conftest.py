"""Root conftest for test suite.

Tests marked ``requires_db`` are skipped unless DATABASE_URL is set.
Run them with: DATABASE_URL=postgresql://... pytest -m requires_db
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest


def pytest_collection_modifyitems(config, items):
    """Skip database tests when no database is configured."""
    if os.getenv("DATABASE_URL"):
        return

    skip_db = pytest.mark.skip(reason="requires DATABASE_URL")
    for item in items:
        if "requires_db" in item.keywords:
            item.add_marker(skip_db)


def make_pool():
    """Mock asyncpg pool whose acquire() yields a single mock connection."""
    pool = MagicMock()
    conn = AsyncMock()
    # transaction() is a plain call returning an async context manager
    conn.transaction = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    return pool, conn


@pytest.fixture
def mock_pool():
    return make_pool()
