"""
Credential lifecycle: password change, password reset and email confirmation.

Reset and confirmation tokens are random, delivered by email and stored only
as SHA-256 digests. A reset token is single-use and expires after
``password_reset_ttl_minutes``. Any password change revokes every session of
the account, so a stolen cookie does not outlive the password it came from.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional
from urllib.parse import urlencode

from sqlalchemy import select, update

from storefront.auth.mailer import Mailer
from storefront.auth.sessions import SessionStore
from storefront.auth.users import UserRepository, hash_password, verify_password
from storefront.core.clock import utcnow
from storefront.core.config import Settings
from storefront.core.errors import AuthenticationError, InvalidTokenError
from storefront.core.logging_config import log_security_event
from storefront.db.models import PasswordResetToken, User
from storefront.db.session import SessionFactory, session_scope

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class CredentialService:
    def __init__(
        self,
        session_factory: SessionFactory,
        users: UserRepository,
        sessions: SessionStore,
        mailer: Mailer,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.users = users
        self.sessions = sessions
        self.mailer = mailer
        self.settings = settings
        self._clock = clock

    def _link(self, path: str, token: str) -> str:
        return f"{self.settings.site_url.rstrip('/')}{path}?{urlencode({'token': token})}"

    def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        ip_address: Optional[str] = None,
    ) -> int:
        """
        Change the password of a signed-in user and revoke all their sessions.

        Returns:
            Number of sessions revoked

        Raises:
            AuthenticationError: If ``current_password`` does not match
        """
        user = self.users.get_user(user_id)
        if user is None or not verify_password(current_password, user.password_hash):
            log_security_event(
                "password_change_rejected",
                "Password change with a wrong current password",
                user_id=user_id,
                ip_address=ip_address,
                level=logging.WARNING,
            )
            raise AuthenticationError("Current password is incorrect")

        self.users.update_password(user_id, new_password)
        log_security_event("password_changed", "Password changed", user_id=user_id, ip_address=ip_address)
        return self.sessions.delete_all_for_user(user_id)

    def request_password_reset(self, email: str, ip_address: Optional[str] = None) -> None:
        """
        Email a reset link when ``email`` belongs to an account.

        Unknown addresses are indistinguishable to the caller, and delivery
        failures are logged only; the token stays valid either way.
        """
        user = self.users.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for an unknown address")
            return

        token = secrets.token_hex(32)
        expires_at = self._clock() + timedelta(minutes=self.settings.password_reset_ttl_minutes)
        with session_scope(self._session_factory) as db:
            db.add(PasswordResetToken(user_id=user.id, token_hash=hash_token(token), expires_at=expires_at))

        log_security_event(
            "password_reset_requested",
            "Password reset link issued",
            user_id=user.id,
            ip_address=ip_address,
        )
        try:
            self.mailer.send_password_reset(user.email, self._link("/auth/reset-password", token))
        except Exception as e:
            logger.error(f"Failed to send password reset email: {e}", extra={"user_id": user.id})

    def _live_reset_token(self, db, token: str) -> Optional[PasswordResetToken]:
        return db.scalar(
            select(PasswordResetToken).where(
                PasswordResetToken.token_hash == hash_token(token),
                PasswordResetToken.used.is_(False),
                PasswordResetToken.expires_at > self._clock(),
            )
        )

    def verify_reset_token(self, token: Optional[str]) -> Optional[str]:
        """User id the token would reset, or None when it is unknown, used or expired."""
        if not token:
            return None
        with session_scope(self._session_factory) as db:
            row = self._live_reset_token(db, token)
            return row.user_id if row else None

    def reset_password(self, token: Optional[str], new_password: str, ip_address: Optional[str] = None) -> int:
        """
        Consume ``token`` and set a new password; every session of the account is revoked.

        Returns:
            Number of sessions revoked

        Raises:
            InvalidTokenError: Unknown, used or expired token
        """
        if not token:
            raise InvalidTokenError()

        with session_scope(self._session_factory) as db:
            row = self._live_reset_token(db, token)
            if row is None:
                log_security_event(
                    "password_reset_rejected",
                    "Unknown, used or expired reset token",
                    ip_address=ip_address,
                    level=logging.WARNING,
                )
                raise InvalidTokenError()

            # Conditional claim: of two concurrent resets with one token, one wins
            claimed = db.execute(
                update(PasswordResetToken)
                .where(PasswordResetToken.id == row.id, PasswordResetToken.used.is_(False))
                .values(used=True)
            ).rowcount
            if claimed != 1:
                raise InvalidTokenError()

            user_id = row.user_id
            # Outstanding links for the same account die with this one
            db.execute(
                update(PasswordResetToken)
                .where(PasswordResetToken.user_id == user_id, PasswordResetToken.used.is_(False))
                .values(used=True)
            )
            user = db.get(User, user_id)
            if user is None:
                raise InvalidTokenError()
            user.password_hash = hash_password(new_password)

        log_security_event("password_reset", "Password reset with emailed token", user_id=user_id, ip_address=ip_address)
        return self.sessions.delete_all_for_user(user_id)

    def sweep_reset_tokens(self) -> int:
        """Delete used and expired reset tokens."""
        with session_scope(self._session_factory) as db:
            rows = db.scalars(
                select(PasswordResetToken).where(
                    PasswordResetToken.used.is_(True) | (PasswordResetToken.expires_at <= self._clock())
                )
            ).all()
            for row in rows:
                db.delete(row)
            count = len(rows)
        logger.info("Reset tokens swept", extra={"deleted_count": count})
        return count

    def issue_email_verification(self, user_id: str) -> bool:
        """Send a fresh confirmation link, replacing any earlier one. False if already verified."""
        token = secrets.token_urlsafe(32)
        with session_scope(self._session_factory) as db:
            user = db.get(User, user_id)
            if user is None or user.email_verified:
                return False
            user.verification_token_hash = hash_token(token)
            email = user.email

        try:
            self.mailer.send_email_verification(email, self._link("/auth/confirm", token))
        except Exception as e:
            logger.error(f"Failed to send verification email: {e}", extra={"user_id": user_id})
        return True

    def verify_email(self, token: Optional[str]) -> str:
        """
        Mark the account owning ``token`` as verified and retire the token.

        Raises:
            InvalidTokenError: Unknown or already used token
        """
        if not token:
            raise InvalidTokenError()

        with session_scope(self._session_factory) as db:
            user = db.scalar(select(User).where(User.verification_token_hash == hash_token(token)))
            if user is None:
                raise InvalidTokenError()
            user.email_verified = True
            user.verification_token_hash = None
            user_id = user.id

        log_security_event("email_verified", "Email address confirmed", user_id=user_id)
        return user_id
