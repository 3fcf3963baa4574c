"""Email relay client adapters."""

from .http import SIGNATURE_HEADER, TIMESTAMP_HEADER, HttpEmailRelay

__all__ = ["HttpEmailRelay", "SIGNATURE_HEADER", "TIMESTAMP_HEADER"]
