"""
Shared fixtures for PostgreSQL integration tests.

Tests that request ``pool`` are skipped when the configured database is
unreachable, so the rest of the suite runs without docker-compose.
"""

from collections.abc import Iterator

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from account_guard.adapters.repository.postgres import run_migrations
from account_guard.config.settings import get_settings


@pytest.fixture(scope="module")
def pool() -> Iterator[ConnectionPool]:
    """Create connection pool for integration tests, migrated to the latest schema."""
    settings = get_settings()
    pool = ConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10, open=True)
    try:
        pool.wait(timeout=3.0)
    except PoolTimeout:
        pool.close()
        pytest.skip(f"PostgreSQL not reachable at {settings.database_url}")
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def clean_database(pool: ConnectionPool) -> Iterator[None]:
    """Clean all tables before each test."""
    with pool.connection() as conn:
        conn.execute("DELETE FROM verification_codes")
        conn.execute("DELETE FROM user_devices")
        conn.execute("DELETE FROM user_accounts")
    yield
