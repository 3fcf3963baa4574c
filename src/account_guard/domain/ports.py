"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the enums shared across the domain and the interfaces
(ports) the domain requires from infrastructure. Adapters implement these
protocols through structural subtyping.

Atomicity contract
------------------
Repositories expose ``transaction(...)`` context managers that yield a unit
of work. Everything the domain reads and writes through that unit happens
in ONE atomic scope, serialized per key by the adapter. Writes are applied
when the block exits normally and discarded when it raises.
"""

from contextlib import AbstractContextManager
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import (
        DeviceSession,
        EmailMessage,
        IdentityClaims,
        UserAccount,
        VerificationRecord,
    )


class DeviceClass(str, Enum):
    """Coarse device class, always derived server-side from the User-Agent."""

    WEB = "web"
    MOBILE = "mobile"
    DESKTOP = "desktop"


class UserStatus(str, Enum):
    """Presence status stored on the user account."""

    ONLINE = "online"
    OFFLINE = "offline"


class Purpose(str, Enum):
    """
    Verification-record key space discriminator.

    An email has at most one active code per purpose.
    """

    VERIFY = "verify"
    RESET = "reset"


class ConsumeResult(Enum):
    """
    Result of a verification code check.

    Used by VerificationCodeStore.consume() to indicate success or the
    specific failure. Only VALID leaves the caller verified.
    """

    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    NOT_FOUND = "not_found"


class VerificationUnit(Protocol):
    """Unit of work over one (purpose, email) verification record."""

    def get(self) -> "VerificationRecord | None":
        """Return the current record, or None if absent."""
        ...

    def put(self, record: "VerificationRecord") -> None:
        """Create or replace the record."""
        ...

    def delete(self) -> None:
        """Remove the record. Deleting an absent record is a no-op."""
        ...


class VerificationRepository(Protocol):
    """Port interface for verification-record persistence."""

    def transaction(
        self, purpose: Purpose, email: str
    ) -> AbstractContextManager[VerificationUnit]:
        """
        Open an atomic read-modify-write scope for one verification key.

        Concurrent transactions for the same (purpose, email) are serialized.
        Transactions for different keys may run in parallel.

        Raises:
            StorageConflict: If the transaction cannot be opened or committed
        """
        ...


class AccountUnit(Protocol):
    """Unit of work over one user account document."""

    def get(self) -> "UserAccount | None":
        """Return the account snapshot, or None if the document is missing."""
        ...

    def put(self, account: "UserAccount") -> None:
        """Create or replace the account document."""
        ...


class DeviceRepository(Protocol):
    """Port interface for user account and device persistence."""

    def transaction(self, user_id: str) -> AbstractContextManager[AccountUnit]:
        """
        Open an atomic read-modify-write scope for one user account.

        Raises:
            StorageConflict: If the transaction cannot be opened or committed
        """
        ...

    def get_account(self, user_id: str) -> "UserAccount | None":
        """Read an account outside of any transaction."""
        ...

    def upsert_device_record(self, user_id: str, device: "DeviceSession") -> None:
        """
        Create or refresh the companion per-device record.

        The stored last-active time is assigned by the storage server,
        never taken from the caller.
        """
        ...

    def delete_device_record(self, user_id: str, device_id: str) -> None:
        """Remove the companion per-device record if present."""
        ...


class IdentityVerifier(Protocol):
    """Port interface for the external identity provider."""

    def verify(self, token: str) -> "IdentityClaims":
        """
        Verify an identity token and extract its claims.

        Raises:
            Unauthenticated: If the token is invalid or expired
        """
        ...


class EmailRelay(Protocol):
    """Port interface for requesting transactional email dispatch."""

    def send(self, message: "EmailMessage") -> None:
        """
        Ask the trusted relay to send a message.

        Raises:
            TransportFailure: If the relay did not accept the message
        """
        ...


class MailTransport(Protocol):
    """Port interface for the transport that actually delivers mail."""

    def deliver(self, message: "EmailMessage") -> None:
        """
        Deliver a message.

        Raises:
            TransportFailure: If delivery failed
        """
        ...
