"""Role-based access control for the reader platform.

Hierarchical roles:
- ADMIN (level 2): moderation and administration
- AUTHOR (level 1): publishes stories, comments like any reader
- USER (level 0): registered reader
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles with hierarchical levels."""

    USER = "user"
    AUTHOR = "author"
    ADMIN = "admin"


ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.USER: 0,
    UserRole.AUTHOR: 1,
    UserRole.ADMIN: 2,
}


def get_role_level(role: UserRole | str | None) -> int:
    """Get the permission level for a role (0 for unknown roles)."""
    if role is None:
        return 0
    if isinstance(role, str):
        try:
            role = UserRole(role)
        except ValueError:
            return 0
    return ROLE_HIERARCHY.get(role, 0)


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.AUTHOR)
        True
        >>> has_permission("user", "admin")
        False
    """
    return get_role_level(user_role) >= get_role_level(required_role)


def is_admin(role: UserRole | str | None) -> bool:
    """Check if role is ADMIN."""
    return get_role_level(role) == ROLE_HIERARCHY[UserRole.ADMIN]
