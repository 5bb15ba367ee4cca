"""Pydantic schemas for authenticated principals."""

from uuid import UUID

from pydantic import BaseModel

from src.auth.permissions import UserRole, is_admin


class TokenUser(BaseModel):
    """Principal extracted from a verified access token."""

    id: UUID
    email: str | None = None
    name: str | None = None
    role: UserRole = UserRole.USER

    @property
    def display_name(self) -> str:
        """Name shown next to the user's comments."""
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@")[0]
        return "Unknown User"

    @property
    def is_admin(self) -> bool:
        """Whether the principal has the admin role."""
        return is_admin(self.role)
