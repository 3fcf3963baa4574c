"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- Deterministic clocks for expiry and rate-window tests
- In-memory repositories and domain services wired for tests
- A recording email relay

Required secrets are set here, before any test imports the settings.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("VERIFICATION_SALT", "test-verification-salt-0123456789")
os.environ.setdefault("RELAY_SECRET", "test-relay-secret-0123456789")
os.environ.setdefault("IDENTITY_SECRET", "test-identity-secret-0123456789")
os.environ.setdefault("STORAGE_BACKEND", "memory")

from account_guard.adapters.repository.memory import (  # noqa: E402
    MemoryDeviceRepository,
    MemoryVerificationRepository,
)
from account_guard.domain.codes import CodeHasher  # noqa: E402
from account_guard.domain.devices import DeviceRegistry  # noqa: E402
from account_guard.domain.exceptions import TransportFailure  # noqa: E402
from account_guard.domain.models import EmailMessage, Fingerprint, IdentityClaims  # noqa: E402
from account_guard.domain.rate_limiter import RateLimiter  # noqa: E402
from account_guard.domain.verification import VerificationCodeStore  # noqa: E402

TEST_SALT = "test-verification-salt-0123456789"
TEST_RELAY_SECRET = "test-relay-secret-0123456789"
TEST_IDENTITY_SECRET = "test-identity-secret-0123456789"


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeTimer:
    """Settable float clock, for the rate limiter and relay signer."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class RecordingRelay:
    """EmailRelay double that records messages or fails on demand."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        if self.fail:
            raise TransportFailure("relay unavailable")
        self.messages.append(message)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def relay() -> RecordingRelay:
    return RecordingRelay()


@pytest.fixture
def verification_repository() -> MemoryVerificationRepository:
    return MemoryVerificationRepository()


@pytest.fixture
def code_store(
    verification_repository: MemoryVerificationRepository,
    relay: RecordingRelay,
    clock: FakeClock,
) -> VerificationCodeStore:
    """Code store with a limiter generous enough to stay out of the way."""
    return VerificationCodeStore(
        repository=verification_repository,
        hasher=CodeHasher(TEST_SALT),
        relay=relay,
        limiter=RateLimiter(max_requests=1_000, window_seconds=60),
        clock=clock,
    )


@pytest.fixture
def device_repository(clock: FakeClock) -> MemoryDeviceRepository:
    return MemoryDeviceRepository(clock=clock)


@pytest.fixture
def registry(device_repository: MemoryDeviceRepository, clock: FakeClock) -> DeviceRegistry:
    return DeviceRegistry(
        repository=device_repository,
        limiter=RateLimiter(max_requests=1_000, window_seconds=60),
        clock=clock,
    )


@pytest.fixture
def identity() -> IdentityClaims:
    return IdentityClaims(
        user_id="user-123",
        email="alice@example.com",
        name="Alice",
        email_verified=True,
    )


@pytest.fixture
def fingerprint() -> Fingerprint:
    return Fingerprint(
        user_agent="Mozilla/5.0 (X11; Linux x86_64) Firefox/120.0",
        client_ip="203.0.113.7",
    )


@pytest.fixture
def make_code_store(verification_repository: MemoryVerificationRepository, clock: FakeClock):
    """Factory for code stores sharing the test repository and clock."""

    def factory(**overrides) -> VerificationCodeStore:
        options = {
            "repository": verification_repository,
            "hasher": CodeHasher(TEST_SALT),
            "relay": RecordingRelay(),
            "limiter": RateLimiter(max_requests=1_000, window_seconds=60),
            "clock": clock,
        }
        options.update(overrides)
        return VerificationCodeStore(**options)

    return factory


@pytest.fixture
def failing_relay() -> RecordingRelay:
    return RecordingRelay(fail=True)
