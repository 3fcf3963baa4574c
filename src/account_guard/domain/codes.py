"""
Verification code generation and hashing.

Raw codes are never persisted: only an HMAC-SHA256 digest keyed by the
server salt is stored, bound to the email it was issued for so a digest
cannot be replayed against another address.
"""

import hashlib
import hmac
import secrets

from .exceptions import ConfigurationError

CODE_LENGTH = 6
_CODE_MIN = 100_000
_CODE_SPAN = 900_000  # uniform over [100000, 999999]


def generate_code() -> str:
    """
    Generate a cryptographically secure 6-digit verification code.

    Uses the secrets module; the first digit is never zero, so the code is
    always exactly six characters.
    """
    return str(_CODE_MIN + secrets.randbelow(_CODE_SPAN))


class CodeHasher:
    """Deterministic, salted one-way hash of (code, email)."""

    def __init__(self, salt: str) -> None:
        if not salt:
            raise ConfigurationError("verification salt is not configured")
        self._key = salt.encode("utf-8")

    def hash(self, code: str, email: str) -> str:
        message = f"{code}:{email}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    @staticmethod
    def verify(candidate_digest: str, stored_digest: str) -> bool:
        """Constant-time digest equality."""
        if len(candidate_digest) != len(stored_digest):
            return False
        return hmac.compare_digest(
            candidate_digest.encode("ascii", "replace"),
            stored_digest.encode("ascii", "replace"),
        )
