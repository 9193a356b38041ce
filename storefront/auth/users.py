"""User and profile lookups, registration and credential checks."""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from storefront.core.errors import ConflictError
from storefront.db.models import Profile, User
from storefront.db.session import SessionFactory, session_scope

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """Hash a password for storage"""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognised or corrupted hash
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class AuthenticatedUser:
    """The caller resolved from a verified token and a live session row."""

    id: str
    email: str
    full_name: Optional[str] = None
    session_id: Optional[str] = None
    email_verified: bool = False


class UserRepository:
    """Reads and writes users and their profiles."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def get_user(self, user_id: str) -> Optional[User]:
        with session_scope(self._session_factory) as db:
            return db.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        with session_scope(self._session_factory) as db:
            return db.scalar(select(User).where(User.email == normalize_email(email)))

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with session_scope(self._session_factory) as db:
            return db.get(Profile, user_id)

    def is_admin(self, user_id: str) -> bool:
        profile = self.get_profile(user_id)
        return bool(profile and profile.is_admin)

    def create_user(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        is_admin: bool = False,
    ) -> User:
        """
        Register a user together with an empty profile.

        Raises:
            ConflictError: If the email is already registered
        """
        email = normalize_email(email)
        user = User(email=email, password_hash=hash_password(password), full_name=full_name)
        user.profile = Profile(full_name=full_name, is_admin=is_admin)
        try:
            with session_scope(self._session_factory) as db:
                db.add(user)
        except IntegrityError:
            logger.info("Registration rejected for existing email")
            raise ConflictError("An account with this email already exists")

        logger.info("User registered", extra={"user_id": user.id})
        return user

    def set_admin(self, user_id: str, is_admin: bool) -> None:
        with session_scope(self._session_factory) as db:
            profile = db.get(Profile, user_id)
            if profile is None:
                profile = Profile(id=user_id)
                db.add(profile)
            profile.is_admin = is_admin

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the user when the credentials match, otherwise None."""
        user = self.get_by_email(email)
        if user is None:
            # Same hashing cost as a wrong password
            pwd_context.dummy_verify()
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    def update_password(self, user_id: str, new_password: str) -> bool:
        """
        Replace the stored password hash.

        Existing sessions are untouched here; callers revoke them through
        ``SessionStore.delete_all_for_user`` (see ``CredentialService``).
        """
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            if user is None:
                return False
            user.password_hash = hash_password(new_password)

        logger.info("Password updated", extra={"user_id": user_id})
        return True
