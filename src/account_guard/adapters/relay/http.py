"""
HTTP email relay client - Implements EmailRelay protocol.

Signs each message with RelaySigner and posts it to the trusted relay.
The request is bounded by a timeout; any timeout, connection error or
non-2xx answer becomes TransportFailure.
"""

import logging

import httpx

from account_guard.domain.exceptions import TransportFailure
from account_guard.domain.models import EmailMessage
from account_guard.domain.relay import RelaySigner

logger = logging.getLogger(__name__)

TIMESTAMP_HEADER = "X-Relay-Timestamp"
SIGNATURE_HEADER = "X-Relay-Signature"


class HttpEmailRelay:
    """
    Implements EmailRelay protocol via httpx.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(
        self,
        url: str,
        signer: RelaySigner,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = url
        self._signer = signer
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, message: EmailMessage) -> None:
        payload = message.to_payload()
        timestamp = self._signer.now()
        headers = {
            TIMESTAMP_HEADER: str(timestamp),
            SIGNATURE_HEADER: self._signer.sign(payload, timestamp),
        }
        try:
            response = self._client.post(self._url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error("Email relay timed out: %s", e)
            raise TransportFailure("email relay timed out") from e
        except httpx.HTTPError as e:
            logger.error("Email relay request failed: %s", e)
            raise TransportFailure("email relay unreachable") from e

        if not response.is_success:
            logger.error("Email relay rejected message: HTTP %s", response.status_code)
            raise TransportFailure(f"email relay answered {response.status_code}")

    def close(self) -> None:
        self._client.close()
