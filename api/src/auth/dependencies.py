"""FastAPI dependencies for authentication.

Provides dependency injection for:
- Current user extraction from JWT
- Role-based access control
- Client information for audit and abuse detection
"""

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from src.auth.permissions import UserRole, has_permission
from src.auth.schemas import TokenUser
from src.auth.security import decode_access_token
from src.core.context import set_user_id
from src.core.middleware import get_client_ip


INSUFFICIENT_PERMISSION = "Insufficient permission"


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


async def get_client_info(request: Request) -> tuple[str | None, str | None]:
    """Extract client information for audit trail.

    Returns:
        Tuple of (user_agent, ip_address)
    """
    return request.headers.get("user-agent"), get_client_ip(request)


def _user_from_payload(payload: dict[str, Any]) -> TokenUser:
    role = payload.get("role")
    if role not in {r.value for r in UserRole}:
        role = UserRole.USER.value

    user = TokenUser(
        id=payload["sub"],
        email=payload.get("email"),
        name=payload.get("name"),
        role=role,
    )
    # Set user_id in context for logging
    set_user_id(user.id)
    return user


async def get_current_user(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> TokenUser:
    """Get current authenticated user from JWT token.

    Raises:
        HTTPException(401): If token is missing, invalid, or expired
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token not provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(token)
        return _user_from_payload(payload)
    except (JWTError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_current_user_optional(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> TokenUser | None:
    """Get current user if authenticated, None otherwise."""
    if not token:
        return None

    try:
        return _user_from_payload(decode_access_token(token))
    except (JWTError, ValueError):
        return None


def require_permission(required_role: UserRole):
    """Create dependency requiring at least a permission level.

    Uses hierarchical comparison: ADMIN >= AUTHOR >= USER
    """

    async def permission_checker(
        user: Annotated[TokenUser, Depends(get_current_user)],
    ) -> TokenUser:
        if not has_permission(user.role, required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=INSUFFICIENT_PERMISSION,
            )

        return user

    return permission_checker


# ==============================================================================
# Type Aliases for Cleaner Code
# ==============================================================================

CurrentUser = Annotated[TokenUser, Depends(get_current_user)]

OptionalUser = Annotated[TokenUser | None, Depends(get_current_user_optional)]

AdminUser = Annotated[TokenUser, Depends(require_permission(UserRole.ADMIN))]

ClientInfo = Annotated[tuple[str | None, str | None], Depends(get_client_info)]
