"""
JWT identity verifier - Implements IdentityVerifier protocol.

Verification is local (signature and claim checks only), so it completes
in bounded time with no network call.
"""

import logging
from datetime import datetime, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from account_guard.domain.exceptions import ConfigurationError, Unauthenticated
from account_guard.domain.models import IdentityClaims

logger = logging.getLogger(__name__)


class JwtIdentityVerifier:
    """
    Verifies identity tokens issued by the identity provider.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(
        self,
        key: str,
        algorithm: str = "HS256",
        audience: str | None = None,
        issuer: str | None = None,
    ) -> None:
        if not key:
            raise ConfigurationError("identity token key is not configured")
        self._key = key
        self._algorithm = algorithm
        self._audience = audience
        self._issuer = issuer

    def verify(self, token: str) -> IdentityClaims:
        if not token:
            raise Unauthenticated("identity token missing")
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_aud": self._audience is not None},
            )
        except ExpiredSignatureError as e:
            raise Unauthenticated("identity token expired") from e
        except JWTError as e:
            logger.warning("Identity token rejected: %s", e)
            raise Unauthenticated("identity token invalid") from e

        subject = claims.get("sub")
        if not subject:
            raise Unauthenticated("identity token has no subject")

        expires_at = None
        if "exp" in claims:
            expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)

        return IdentityClaims(
            user_id=str(subject),
            email=claims.get("email"),
            name=claims.get("name"),
            picture=claims.get("picture"),
            email_verified=bool(claims.get("email_verified", False)),
            expires_at=expires_at,
        )
