"""Identity provider adapters."""

from .jwt import JwtIdentityVerifier

__all__ = ["JwtIdentityVerifier"]
