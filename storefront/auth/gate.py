"""
Per-request authorization.

One gate is bound to the token presented with a request. It answers "who is
this" once and reuses the answer for the rest of the request. Admin status is
read from the stored profile on every request, never from client input.
"""

import logging
from typing import Optional

from storefront.auth.sessions import SessionStore
from storefront.auth.users import AuthenticatedUser, UserRepository
from storefront.core.errors import AuthenticationError, AuthorizationError
from storefront.core.logging_config import log_security_event

logger = logging.getLogger(__name__)

_UNRESOLVED = object()


class AuthorizationGate:
    def __init__(
        self,
        sessions: SessionStore,
        users: UserRepository,
        token: Optional[str],
        ip_address: Optional[str] = None,
    ):
        self.sessions = sessions
        self.users = users
        self.token = token
        self.ip_address = ip_address
        self._user = _UNRESOLVED
        self._is_admin: Optional[bool] = None

    def get_user(self) -> Optional[AuthenticatedUser]:
        """Resolve the caller, or None when there is no live session."""
        if self._user is not _UNRESOLVED:
            return self._user  # type: ignore[return-value]

        user = None
        record = self.sessions.lookup(self.token, ip_address=self.ip_address)
        if record is not None:
            db_user = self.users.get_user(record.user_id)
            if db_user is None:
                logger.warning("Session references a missing user", extra={"user_id": record.user_id})
            else:
                user = AuthenticatedUser(
                    id=db_user.id,
                    email=db_user.email,
                    full_name=db_user.full_name,
                    session_id=record.id,
                    email_verified=db_user.email_verified,
                )

        self._user = user
        return user

    def require_user(self) -> AuthenticatedUser:
        user = self.get_user()
        if user is None:
            raise AuthenticationError()
        return user

    def require_admin(self) -> AuthenticatedUser:
        """
        Resolve the caller and insist on the admin flag.

        Raises:
            AuthenticationError: No live session
            AuthorizationError: Authenticated, but the profile is not admin
        """
        user = self.require_user()
        if not self._check_admin(user.id):
            log_security_event(
                "admin_access_denied",
                "Non-admin attempted an admin operation",
                user_id=user.id,
                ip_address=self.ip_address,
                level=logging.WARNING,
            )
            raise AuthorizationError("Admin access required")
        return user

    def is_admin(self) -> bool:
        user = self.get_user()
        if user is None:
            return False
        return self._check_admin(user.id)

    def _check_admin(self, user_id: str) -> bool:
        if self._is_admin is None:
            self._is_admin = self.users.is_admin(user_id)
        return self._is_admin
