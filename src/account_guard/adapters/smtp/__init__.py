"""Mail transport adapters."""

from .console import ConsoleMailTransport

__all__ = ["ConsoleMailTransport"]
