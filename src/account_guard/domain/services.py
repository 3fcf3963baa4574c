"""
Request orchestration - authenticate, rate limit, then delegate.

These services sit between the HTTP layer and the domain components. Each
one performs every validation and authentication step before any storage
mutation, so rejected requests never leave partial writes behind.
"""

import logging
from dataclasses import dataclass
from typing import Any

from .devices import DeviceRegistry, classify_user_agent
from .exceptions import InvalidInput, RateLimited, Unauthenticated
from .models import DeviceRegistration, DeviceSession, EmailMessage, Fingerprint, IssuedCode
from .ports import ConsumeResult, DeviceClass, IdentityVerifier, MailTransport, Purpose
from .rate_limiter import RateLimiter
from .relay import RelaySigner
from .verification import VerificationCodeStore

logger = logging.getLogger(__name__)

# Twelve digits covers any plausible Unix time in seconds.
MAX_RELAY_TIMESTAMP = 999_999_999_999


@dataclass
class RegistrationService:
    """Device registration for callers holding an identity token."""

    identity_verifier: IdentityVerifier
    registry: DeviceRegistry

    def register_device(
        self,
        auth_token: str,
        user_agent: str,
        client_ip: str,
        declared_class: DeviceClass | None = None,
        existing_device_id: str | None = None,
    ) -> DeviceRegistration:
        """
        Verify the identity token and register the calling device.

        The declared device class is a client hint only; the stored class
        is always derived from the User-Agent.

        Raises:
            Unauthenticated: If the identity token is rejected
            RateLimited: If the user or IP window is exhausted
            StorageConflict: If the device transaction could not commit
        """
        identity = self.identity_verifier.verify(auth_token)
        device_class = classify_user_agent(user_agent)
        if declared_class is not None and declared_class != device_class:
            logger.info(
                "Declared device class %s overridden by %s for user %s",
                declared_class.value,
                device_class.value,
                identity.user_id,
            )
        return self.registry.register_device(
            identity,
            Fingerprint(user_agent=user_agent, client_ip=client_ip),
            device_class,
            existing_device_id,
        )

    def sign_out_device(self, auth_token: str, device_id: str | None) -> bool:
        identity = self.identity_verifier.verify(auth_token)
        if not device_id:
            return False
        return self.registry.sign_out_device(identity.user_id, device_id)

    def list_devices(self, auth_token: str) -> tuple[DeviceSession, ...]:
        identity = self.identity_verifier.verify(auth_token)
        return self.registry.list_devices(identity.user_id)


@dataclass
class VerificationService:
    """Send and check verification codes on behalf of anonymous callers."""

    code_store: VerificationCodeStore

    def send(self, email: str, purpose: Purpose, client_ip: str | None) -> IssuedCode:
        """
        Raises:
            InvalidInput, RateLimited, StorageConflict, TransportFailure
        """
        return self.code_store.issue(email, purpose, client_ip)

    def verify(self, email: str, code: str, purpose: Purpose, client_ip: str | None) -> bool:
        """
        Check a code and collapse the outcome to a boolean.

        The specific failure is logged but never returned, so responses do
        not reveal whether a code was ever issued for the address.
        """
        result = self.code_store.consume(email, purpose, code, client_ip)
        if result is not ConsumeResult.VALID:
            logger.info("Verification for %s failed: %s", purpose.value, result.value)
            return False
        return True

    def expires_in_seconds(self, purpose: Purpose) -> int:
        return int(self.code_store.ttl_for(purpose).total_seconds())


@dataclass
class RelayService:
    """
    Receiving side of the email relay.

    Authenticates a signed request, then hands the message to the mail
    transport.
    """

    signer: RelaySigner
    transport: MailTransport
    limiter: RateLimiter

    def authenticate(
        self,
        payload: dict[str, Any],
        timestamp: str | int | None,
        signature: str | None,
        client_ip: str,
    ) -> None:
        """
        Raises:
            RateLimited: If the caller's window is exhausted
            Unauthenticated: If the signature is missing, stale or wrong
        """
        key = f"relay:{client_ip}"
        if not self.limiter.check(key):
            logger.warning("Relay request rate limited for %s", key)
            raise RateLimited(key)
        if timestamp is None or not signature:
            raise Unauthenticated("relay signature headers missing")
        try:
            unix_time = int(timestamp)
        except (TypeError, ValueError):
            raise Unauthenticated("relay timestamp is not an integer") from None
        if not 0 <= unix_time <= MAX_RELAY_TIMESTAMP:
            raise Unauthenticated("relay timestamp out of range")
        if not self.signer.verify(payload, unix_time, signature):
            raise Unauthenticated("relay signature rejected")

    def deliver(self, message: EmailMessage) -> None:
        """
        Raises:
            InvalidInput: If the message has no recipient
            TransportFailure: If the mail transport failed
        """
        if not message.to:
            raise InvalidInput("message has no recipient")
        self.transport.deliver(message)
        logger.info("Relayed message to %d recipient(s)", len(message.to) + len(message.cc))
