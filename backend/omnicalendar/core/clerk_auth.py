"""Clerk authentication for JWT bearer tokens.

Tokens are RS256 JWTs issued by Clerk. Signing keys come from the
issuer's JWKS endpoint; issuer and audience are checked when configured.
"""

import logging
from functools import lru_cache
from typing import Any, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient
from sqlalchemy.ext.asyncio import AsyncSession

from omnicalendar.core.config import get_settings
from omnicalendar.core.database import get_db
from omnicalendar.core.exceptions import ConfigurationError, Unauthenticated
from omnicalendar.models.user import User
from omnicalendar.observability import MetricsBackend, get_metrics_backend
from omnicalendar.services.identity import CurrentUserService, Principal

logger = logging.getLogger(__name__)

# auto_error=False so a missing header surfaces as Unauthenticated
security = HTTPBearer(auto_error=False)


class ClerkAuth:
    """Verifies Clerk-issued JWTs.

    All verification parameters are passed in explicitly so that tests and
    alternative deployments can build their own verifier.
    """

    def __init__(
        self,
        issuer: Optional[str],
        audience: Optional[str] = None,
        jwks_url: Optional[str] = None,
        jwks_client: Optional[PyJWKClient] = None,
        algorithms: tuple[str, ...] = ("RS256",),
        metrics: Optional[MetricsBackend] = None,
    ) -> None:
        self.issuer = issuer
        self.metrics = metrics or get_metrics_backend()
        self.audience = audience
        self.algorithms = list(algorithms)
        self._jwks_client = jwks_client
        if self._jwks_client is None and jwks_url:
            self._jwks_client = PyJWKClient(jwks_url)
            logger.info(f"Initialized JWKS client with URL: {jwks_url}")

    def verify_token(self, token: str) -> dict[str, Any]:
        """Verify a JWT and return its claims.

        Args:
            token: Raw bearer token.

        Returns:
            Decoded JWT payload.

        Raises:
            ConfigurationError: No JWKS source is configured.
            Unauthenticated: Token is expired, malformed or fails validation.
        """
        if self._jwks_client is None:
            self.metrics.observe_auth_failure("unconfigured")
            raise ConfigurationError("Clerk authentication not configured")

        try:
            signing_key = self._jwks_client.get_signing_key_from_jwt(token)
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=self.algorithms,
                issuer=self.issuer,
                audience=self.audience,
                options={
                    "require": ["exp"],
                    "verify_iss": self.issuer is not None,
                    "verify_aud": self.audience is not None,
                },
            )
        except jwt.ExpiredSignatureError:
            logger.warning("JWT token has expired")
            self.metrics.observe_auth_failure("expired")
            raise Unauthenticated("Token has expired")
        except jwt.PyJWTError as e:
            logger.warning(f"Invalid JWT token: {e}")
            self.metrics.observe_auth_failure("invalid")
            raise Unauthenticated("Invalid token")

        logger.debug(f"JWT verified for subject: {payload.get('sub')}")
        return payload


@lru_cache
def get_clerk_auth() -> ClerkAuth:
    """Build the process-wide verifier from settings."""
    settings = get_settings()
    return ClerkAuth(
        issuer=settings.clerk_issuer,
        audience=settings.clerk_audience,
        jwks_url=settings.resolved_jwks_url,
    )


async def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth: ClerkAuth = Depends(get_clerk_auth),
) -> Optional[Principal]:
    """Verify the bearer token, if any, and return the caller's principal."""
    if not credentials or not credentials.credentials:
        logger.debug("No authorization credentials provided")
        return None

    payload = auth.verify_token(credentials.credentials)
    return Principal.from_claims(payload)


async def get_current_user(
    principal: Optional[Principal] = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the caller to a User row, creating it on first login."""
    return await CurrentUserService(db).get_or_create_user(principal)
