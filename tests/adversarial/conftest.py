"""
Shared fixtures for adversarial tests.

Attack simulations run against the in-memory adapters, whose per-key
locks give the same serialization guarantees as the PostgreSQL
transactions; the PostgreSQL variants live in tests/integration.
"""

import pytest

from account_guard.domain.rate_limiter import RateLimiter


@pytest.fixture
def wide_limiter() -> RateLimiter:
    """Limiter that never trips, so only the property under attack is tested."""
    return RateLimiter(max_requests=100_000, window_seconds=3600)
