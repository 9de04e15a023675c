"""
Security utilities for JWT verification.

Tokens are issued by an external identity service. This module only verifies
signatures and standard claims so the tenant resolver can trust the tenant
claim of a verified token without a database lookup.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import jwt

logger = logging.getLogger(__name__)


class TokenVerificationError(Exception):
    """Raised when a bearer token cannot be verified."""

    pass


class TokenVerifier(Protocol):
    """Collaborator that turns a raw bearer token into verified claims."""

    def verify(self, token: str) -> Dict[str, Any]:
        ...


class JWTTokenVerifier:
    """
    Verifies JWT signatures and registered claims with PyJWT.

    Attributes:
        key: Public key (RS*/ES*) or shared secret (HS*)
        algorithms: Accepted signing algorithms
        audience: Expected 'aud' claim, skipped when None
        issuer: Expected 'iss' claim, skipped when None

    Example:
        >>> verifier = JWTTokenVerifier(public_key, algorithms=["RS256"])
        >>> claims = verifier.verify(token)
        >>> claims["tenant_id"]
    """

    def __init__(
        self,
        key: str,
        algorithms: List[str],
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        self.key = key
        self.algorithms = algorithms
        self.audience = audience or None
        self.issuer = issuer or None

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Verify the token and return its claims.

        Raises:
            TokenVerificationError: If the signature, expiry, audience or issuer
                is invalid
        """
        options = {"require": ["exp"], "verify_aud": self.audience is not None}
        try:
            return jwt.decode(
                token,
                self.key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except jwt.PyJWTError as e:
            logger.warning(
                "Token verification failed",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            raise TokenVerificationError(str(e)) from e


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an 'Authorization: Bearer <token>' header value."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]
