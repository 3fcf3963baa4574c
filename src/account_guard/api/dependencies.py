"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.

Rate limiters are process-wide singletons, one per call site, so their
windows survive across requests. Repositories are built per request from
the connection pool, or shared in-memory instances when the memory
backend is selected.
"""

from datetime import timedelta
from functools import lru_cache

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from psycopg_pool import ConnectionPool

from account_guard.adapters.identity import JwtIdentityVerifier
from account_guard.adapters.relay import HttpEmailRelay
from account_guard.adapters.repository import (
    MemoryDeviceRepository,
    MemoryVerificationRepository,
    PostgresDeviceRepository,
    PostgresVerificationRepository,
)
from account_guard.adapters.smtp import ConsoleMailTransport
from account_guard.config.settings import get_settings
from account_guard.domain.codes import CodeHasher
from account_guard.domain.devices import DeviceRegistry
from account_guard.domain.exceptions import Unauthenticated
from account_guard.domain.ports import DeviceRepository, Purpose, VerificationRepository
from account_guard.domain.rate_limiter import RateLimiter
from account_guard.domain.relay import RelaySigner
from account_guard.domain.services import RegistrationService, RelayService, VerificationService
from account_guard.domain.verification import VerificationCodeStore

# Module-level singletons - shared state for the memory backend
_memory_verification_repository = MemoryVerificationRepository()
_memory_device_repository = MemoryDeviceRepository()


def get_pool(request: Request) -> ConnectionPool:
    """
    Get connection pool from app state.

    The pool is created during app lifespan startup and stored in app.state.
    """
    return request.app.state.pool


def get_verification_repository(request: Request) -> VerificationRepository:
    if get_settings().storage_backend == "memory":
        return _memory_verification_repository
    return PostgresVerificationRepository(get_pool(request))


def get_device_repository(request: Request) -> DeviceRepository:
    if get_settings().storage_backend == "memory":
        return _memory_device_repository
    return PostgresDeviceRepository(get_pool(request))


@lru_cache
def get_device_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        max_requests=settings.device_rate_limit_max,
        window_seconds=settings.device_rate_limit_window_seconds,
        capacity=settings.rate_limiter_capacity,
    )


@lru_cache
def get_code_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        max_requests=settings.code_rate_limit_max,
        window_seconds=settings.code_rate_limit_window_seconds,
        capacity=settings.rate_limiter_capacity,
    )


@lru_cache
def get_relay_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        max_requests=settings.relay_rate_limit_max,
        window_seconds=settings.relay_rate_limit_window_seconds,
        capacity=settings.rate_limiter_capacity,
    )


@lru_cache
def get_code_hasher() -> CodeHasher:
    return CodeHasher(get_settings().verification_salt.get_secret_value())


@lru_cache
def get_relay_signer() -> RelaySigner:
    settings = get_settings()
    return RelaySigner(
        settings.relay_secret.get_secret_value(),
        freshness_seconds=settings.relay_freshness_seconds,
    )


@lru_cache
def get_email_relay() -> HttpEmailRelay:
    settings = get_settings()
    return HttpEmailRelay(
        settings.relay_url,
        get_relay_signer(),
        timeout=settings.relay_timeout_seconds,
    )


@lru_cache
def get_mail_transport() -> ConsoleMailTransport:
    return ConsoleMailTransport(get_settings().mail_from)


@lru_cache
def get_identity_verifier() -> JwtIdentityVerifier:
    settings = get_settings()
    return JwtIdentityVerifier(
        settings.identity_secret.get_secret_value(),
        algorithm=settings.identity_algorithm,
        audience=settings.identity_audience,
        issuer=settings.identity_issuer,
    )


def get_verification_service(request: Request) -> VerificationService:
    """
    Create verification service with injected dependencies.

    Wires together the repository, hasher, relay and limiter for the
    verification code store.
    """
    settings = get_settings()
    store = VerificationCodeStore(
        repository=get_verification_repository(request),
        hasher=get_code_hasher(),
        relay=get_email_relay(),
        limiter=get_code_limiter(),
        ttls={
            Purpose.VERIFY: timedelta(seconds=settings.verify_code_ttl_seconds),
            Purpose.RESET: timedelta(seconds=settings.reset_code_ttl_seconds),
        },
        max_attempts=settings.max_attempts,
        bind_to_ip=settings.bind_code_to_ip,
        app_name=settings.app_name,
    )
    return VerificationService(code_store=store)


def get_registration_service(request: Request) -> RegistrationService:
    """Create registration service with the identity verifier and device registry."""
    registry = DeviceRegistry(
        repository=get_device_repository(request),
        limiter=get_device_limiter(),
        max_devices=get_settings().max_devices,
    )
    return RegistrationService(identity_verifier=get_identity_verifier(), registry=registry)


def get_relay_service() -> RelayService:
    return RelayService(
        signer=get_relay_signer(),
        transport=get_mail_transport(),
        limiter=get_relay_limiter(),
    )


def get_client_ip(request: Request) -> str:
    """
    Derive the client address from the request, never from the body.

    Proxy headers are honoured only when ``trust_proxy_headers`` is set;
    the first X-Forwarded-For hop is the original client.
    """
    if get_settings().trust_proxy_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or "unknown"


def get_device_cookie(request: Request) -> str | None:
    return request.cookies.get(get_settings().device_cookie_name)


# Bearer security scheme for OpenAPI documentation
http_bearer = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
) -> str:
    """
    Extract the identity token from the Authorization header.

    Raises Unauthenticated (mapped to the standard 401 body) when absent.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("bearer token missing")
    return credentials.credentials
