"""User profiles and per-user comment statistics."""

from src.users.models import USERS_TABLES_CQL, UserProfile
from src.users.service import UserStore


__all__ = [
    "USERS_TABLES_CQL",
    "UserProfile",
    "UserStore",
]
