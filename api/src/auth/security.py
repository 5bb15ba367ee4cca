"""JWT access token handling.

Tokens are issued by the account service; this API only verifies them.
``create_access_token`` mirrors the issuer's format for tooling and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from src.config.settings import get_settings


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token.

    Args:
        data: Payload data (typically {"sub": user_id, "email": email, "role": role})
        expires_delta: Token lifetime (default from settings)
    """
    settings = get_settings()

    now = datetime.now(UTC)
    to_encode = data.copy()
    to_encode.update(
        {
            "exp": now
            + (
                expires_delta
                or timedelta(minutes=settings.auth_access_token_expire_minutes)
            ),
            "iat": now,
            "type": "access",
        }
    )

    return jwt.encode(
        to_encode,
        settings.auth_secret_key,
        algorithm=settings.auth_algorithm,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and validate an access token.

    Validates the signature, the expiration time and that the token type
    is "access".

    Raises:
        JWTError: If token is invalid, expired, or wrong type
    """
    settings = get_settings()

    payload = jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
    )

    if payload.get("type") != "access":
        msg = "Invalid token type: expected 'access'"
        raise JWTError(msg)

    if "sub" not in payload:
        msg = "Access token missing sub claim"
        raise JWTError(msg)

    return payload
