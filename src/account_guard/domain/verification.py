"""
Verification code lifecycle - issue and consume one-time codes.

One active record exists per (purpose, email). Issuing a code replaces any
previous record for the key; consuming it runs entirely inside a single
repository transaction so concurrent guesses are serialized:

    absent              -> NOT_FOUND
    past expiry         -> delete, EXPIRED
    attempts >= max     -> delete, ATTEMPTS_EXCEEDED
    digest matches      -> delete, VALID
    digest mismatches   -> attempts + 1, INVALID

Two concurrent consume calls can therefore never both read attempt count N
and both write N + 1.

Delivery asymmetry: the record is committed BEFORE the relay is asked to
send the code. If dispatch fails the stored code stays valid but the caller
receives TransportFailure. An undelivered code is inert; it is never
reported as delivered.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta

from .codes import CodeHasher, generate_code
from .exceptions import InvalidInput, RateLimited, TransportFailure
from .messages import compose_code_message
from .models import Clock, IssuedCode, VerificationRecord, utc_now
from .ports import ConsumeResult, EmailRelay, Purpose, VerificationRepository
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_TTLS = {
    Purpose.VERIFY: timedelta(minutes=10),
    Purpose.RESET: timedelta(minutes=30),
}
DEFAULT_MAX_ATTEMPTS = 5


def normalize_email(email: str) -> str:
    """
    Normalize email address for consistent storage and lookup.

    Applies: strip whitespace + lowercase
    """
    return email.strip().lower()


@dataclass
class VerificationCodeStore:
    """
    Domain service owning verification records.

    Rate limiting uses one limiter with ``email:`` and ``ip:`` prefixed
    identifiers; either being exhausted rejects the request.
    """

    repository: VerificationRepository
    hasher: CodeHasher
    relay: EmailRelay
    limiter: RateLimiter
    ttls: dict[Purpose, timedelta] = field(default_factory=lambda: dict(DEFAULT_TTLS))
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    bind_to_ip: bool = False
    app_name: str = "Vibez"
    clock: Clock = utc_now
    code_factory: Callable[[], str] = generate_code

    def issue(self, email: str, purpose: Purpose, client_ip: str | None = None) -> IssuedCode:
        """
        Generate, store and dispatch a new code.

        Args:
            email: Recipient email address (will be normalized)
            purpose: Which key space the code belongs to
            client_ip: Server-derived client address, used for rate limiting

        Returns:
            IssuedCode describing the committed record

        Raises:
            InvalidInput: If the email address is blank or malformed
            RateLimited: If the email or IP window is exhausted
            StorageConflict: If the record could not be committed
            TransportFailure: If the code was stored but could not be sent
        """
        normalized_email = normalize_email(email)
        if "@" not in normalized_email:
            raise InvalidInput("email address is malformed")

        self._enforce_rate_limit(normalized_email, client_ip)

        code = self.code_factory()
        ttl = self.ttls[purpose]
        record = VerificationRecord.issue(
            purpose=purpose,
            email=normalized_email,
            code_hash=self.hasher.hash(code, normalized_email),
            ttl=ttl,
            now=self.clock(),
            origin_ip=client_ip,
        )

        with self.repository.transaction(purpose, normalized_email) as unit:
            unit.put(record)
        logger.info("Stored %s code for %s", purpose.value, normalized_email)

        message = compose_code_message(purpose, normalized_email, code, ttl, self.app_name)
        try:
            self.relay.send(message)
        except TransportFailure:
            logger.error(
                "Stored %s code for %s but dispatch failed", purpose.value, normalized_email
            )
            raise

        return IssuedCode(
            email=normalized_email,
            purpose=purpose,
            expires_at=record.expires_at,
            code=code,
        )

    def consume(
        self,
        email: str,
        purpose: Purpose,
        code: str,
        client_ip: str | None = None,
    ) -> ConsumeResult:
        """
        Check a candidate code against the stored record.

        The candidate digest is computed before the record is read so every
        path performs the same hashing work.

        Raises:
            StorageConflict: If the transaction could not commit
        """
        normalized_email = normalize_email(email)
        candidate = self.hasher.hash(code.strip(), normalized_email)

        with self.repository.transaction(purpose, normalized_email) as unit:
            record = unit.get()
            if record is None:
                return ConsumeResult.NOT_FOUND

            if record.is_expired(self.clock()):
                unit.delete()
                logger.info("Expired %s code for %s discarded", purpose.value, normalized_email)
                return ConsumeResult.EXPIRED

            if record.attempts >= self.max_attempts:
                unit.delete()
                logger.warning(
                    "Attempt limit reached for %s code for %s", purpose.value, normalized_email
                )
                return ConsumeResult.ATTEMPTS_EXCEEDED

            digest_valid = self.hasher.verify(candidate, record.code_hash)
            if digest_valid and self._origin_matches(record, client_ip):
                unit.delete()
                return ConsumeResult.VALID

            unit.put(record.with_failed_attempt())
            return ConsumeResult.INVALID

    def ttl_for(self, purpose: Purpose) -> timedelta:
        return self.ttls[purpose]

    def _origin_matches(self, record: VerificationRecord, client_ip: str | None) -> bool:
        if not self.bind_to_ip or record.origin_ip is None:
            return True
        return record.origin_ip == client_ip

    def _enforce_rate_limit(self, email: str, client_ip: str | None) -> None:
        # IP first: a request refused on IP must not count against the address.
        keys = [f"email:{email}"]
        if client_ip is not None:
            keys.insert(0, f"ip:{client_ip}")
        for key in keys:
            if not self.limiter.check(key):
                logger.warning("Code request rate limited for %s", key)
                raise RateLimited(key)
