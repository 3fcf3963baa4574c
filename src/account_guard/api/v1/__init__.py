"""
API v1 package.

Contains versioned API routes for the account-security API.
"""

from account_guard.api.v1.routes import router

__all__ = ["router"]
