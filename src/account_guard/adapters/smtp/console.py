"""
Console mail transport adapter - Implements MailTransport protocol.

This module provides a console-based implementation of the domain's
mail transport port, logging messages for demo and development purposes.
"""

import logging

from account_guard.domain.models import EmailMessage

logger = logging.getLogger(__name__)


class ConsoleMailTransport:
    """
    Implements MailTransport protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - prints message text to the log.
    """

    def __init__(self, sender: str = "noreply@localhost") -> None:
        self.sender = sender

    def deliver(self, message: EmailMessage) -> None:
        """
        Log the message (simulates delivery).

        In production, this would be replaced with an SMTP adapter.
        The plain-text body is logged at INFO level so verification codes
        are visible in docker-compose logs.

        Args:
            message: Message accepted by the relay
        """
        logger.info(
            "[MAIL] From: %s To: %s Subject: %s Body: %s",
            self.sender,
            ", ".join(message.to),
            message.subject,
            message.text or "",
        )
        for attachment in message.attachments:
            logger.info(
                "[MAIL] Attachment: %s (%s, %s)",
                attachment.filename,
                attachment.content_type or "application/octet-stream",
                attachment.encoding,
            )
