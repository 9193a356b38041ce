"""Database models"""

from storefront.db.models.password_reset_token import PasswordResetToken
from storefront.db.models.user import Profile, User
from storefront.db.models.user_session import UserSession

__all__ = [
    "User",
    "Profile",
    "UserSession",
    "PasswordResetToken",
]
