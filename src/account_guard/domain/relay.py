"""
Relay request signing - HMAC-SHA256 over a canonical payload.

The signed message is ``"<unix timestamp>.<canonical JSON>"``, so neither
the payload nor the timestamp can be altered without invalidating the
signature. Verification additionally rejects timestamps outside the
freshness window, which defeats replay of captured requests.
"""

import hashlib
import hmac
import json
import logging
import string
import time
from collections.abc import Callable
from typing import Any

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_SECONDS = 300
_SIGNATURE_LENGTH = hashlib.sha256().digest_size * 2
_HEX_DIGITS = frozenset(string.hexdigits)


def canonicalize(payload: dict[str, Any]) -> str:
    """Stable serialization: sorted keys, no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class RelaySigner:
    """Signs and verifies relay requests with a shared server secret."""

    def __init__(
        self,
        secret: str,
        freshness_seconds: int = DEFAULT_FRESHNESS_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ConfigurationError("relay secret is not configured")
        self._key = secret.encode("utf-8")
        self.freshness_seconds = freshness_seconds
        self._clock = clock

    def sign(self, payload: dict[str, Any], timestamp: int) -> str:
        message = f"{int(timestamp)}.{canonicalize(payload)}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def verify(self, payload: dict[str, Any], timestamp: int, signature: str) -> bool:
        """
        Check freshness, then the signature in constant time.

        Malformed signatures are rejected before ``hmac.compare_digest``
        so that an odd-length or non-ASCII input cannot raise.
        """
        try:
            skew = abs(self._clock() - int(timestamp))
        except OverflowError:
            skew = float("inf")
        if skew > self.freshness_seconds:
            logger.warning("Relay request rejected: timestamp outside freshness window")
            return False

        candidate = signature.strip().lower()
        if len(candidate) != _SIGNATURE_LENGTH or not _HEX_DIGITS.issuperset(candidate):
            logger.warning("Relay request rejected: malformed signature")
            return False

        expected = self.sign(payload, timestamp)
        return hmac.compare_digest(expected.encode("ascii"), candidate.encode("ascii"))

    def now(self) -> int:
        """Current Unix timestamp from this signer's clock."""
        return int(self._clock())
