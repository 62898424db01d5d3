"""
JWT access token helpers.

Tokens are issued by the account service; this backend only needs to decode
and validate them.
"""

from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger

logger = get_logger(__name__)


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Decode and validate an access token.

    Args:
        token: Encoded JWT

    Returns:
        Token claims

    Raises:
        TokenError: If the token is malformed, expired or has no subject
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        logger.warning(
            "JWT validation error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError("Invalid token", code="INVALID_TOKEN") from e

    if payload.get("type", "access") != "access":
        raise TokenError("Wrong token type", code="INVALID_TOKEN_TYPE")

    subject = payload.get("sub")
    if not subject:
        raise TokenError("Token missing subject", code="MISSING_SUBJECT")

    try:
        payload["sub"] = UUID(subject)
    except ValueError as e:
        raise TokenError(
            "Invalid subject format", code="INVALID_SUBJECT", subject=subject
        ) from e

    return payload


def get_security_headers() -> dict[str, str]:
    """
    Response headers added to every API response.

    HSTS is only sent in production, where the API is served over TLS.
    """
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }
    if get_settings().is_production:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers
