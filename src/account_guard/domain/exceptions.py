"""
Domain exceptions - Semantic error types for the account-security core.

Each exception carries a stable, coarse ``code`` that the API boundary
exposes verbatim. The human-readable message is for logs only and must
never reach a client, since it may reveal whether an account exists.
"""


class AccountGuardError(Exception):
    """Base class for account-security domain errors."""

    code = "internal"
    retryable = False


class InvalidInput(AccountGuardError):
    """Malformed request body or field. Raised before any storage access."""

    code = "invalid_input"


class Unauthenticated(AccountGuardError):
    """Identity token missing, malformed, expired, or rejected."""

    code = "unauthenticated"


class RateLimited(AccountGuardError):
    """Per-key rate window exhausted."""

    code = "rate_limited"

    def __init__(self, identifier: str) -> None:
        super().__init__(f"Rate limit exceeded for {identifier}")
        self.identifier = identifier


class NotFound(AccountGuardError):
    """No matching verification record or user."""

    code = "not_found"


class Expired(AccountGuardError):
    """Record is past its TTL."""

    code = "expired"


class AttemptsExceeded(AccountGuardError):
    """Too many failed code checks."""

    code = "attempts_exceeded"


class TransportFailure(AccountGuardError):
    """
    Email dispatch could not be completed.

    Raised after a verification code has already been committed, so callers
    can tell "code exists but undelivered" apart from "no code was created".
    """

    code = "delivery_failed"


class StorageConflict(AccountGuardError):
    """Transaction could not commit (contention or connectivity). Retryable."""

    code = "storage_conflict"
    retryable = True


class Internal(AccountGuardError):
    """Unexpected failure."""

    code = "internal"


class ConfigurationError(AccountGuardError):
    """Fatal startup misconfiguration, e.g. a missing server secret."""

    code = "internal"
