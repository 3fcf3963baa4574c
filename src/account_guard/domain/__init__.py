"""
Domain layer - Pure business logic with zero framework imports.

This package contains the account-security core: the rate limiter, code
hashing, relay signing, the verification-code lifecycle and the device
registry. It defines its own port interfaces for infrastructure
abstraction, ensuring true hexagonal architecture decoupling.
"""

from .codes import CodeHasher, generate_code
from .devices import DeviceRegistry, classify_user_agent
from .exceptions import (
    AccountGuardError,
    AttemptsExceeded,
    ConfigurationError,
    Expired,
    Internal,
    InvalidInput,
    NotFound,
    RateLimited,
    StorageConflict,
    TransportFailure,
    Unauthenticated,
)
from .models import (
    Attachment,
    DeviceRegistration,
    DeviceSession,
    EmailMessage,
    Fingerprint,
    IdentityClaims,
    IssuedCode,
    UserAccount,
    VerificationRecord,
)
from .ports import (
    ConsumeResult,
    DeviceClass,
    DeviceRepository,
    EmailRelay,
    IdentityVerifier,
    MailTransport,
    Purpose,
    UserStatus,
    VerificationRepository,
)
from .rate_limiter import RateLimiter
from .relay import RelaySigner
from .services import RegistrationService, RelayService, VerificationService
from .verification import VerificationCodeStore

__all__ = [
    "AccountGuardError",
    "Attachment",
    "AttemptsExceeded",
    "CodeHasher",
    "ConfigurationError",
    "ConsumeResult",
    "DeviceClass",
    "DeviceRegistration",
    "DeviceRegistry",
    "DeviceRepository",
    "DeviceSession",
    "EmailMessage",
    "EmailRelay",
    "Expired",
    "Fingerprint",
    "IdentityClaims",
    "IdentityVerifier",
    "Internal",
    "InvalidInput",
    "IssuedCode",
    "MailTransport",
    "NotFound",
    "Purpose",
    "RateLimited",
    "RateLimiter",
    "RegistrationService",
    "RelayService",
    "RelaySigner",
    "StorageConflict",
    "TransportFailure",
    "Unauthenticated",
    "UserAccount",
    "UserStatus",
    "VerificationCodeStore",
    "VerificationRecord",
    "VerificationRepository",
    "VerificationService",
    "classify_user_agent",
    "generate_code",
]
