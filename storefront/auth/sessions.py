"""
Server-side sessions backing the session cookie.

A token is only trusted when it verifies cryptographically AND a live session
row exists for it. Deleting the row revokes the token immediately, whatever
the token's own expiry says.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy import delete, select
from starlette.responses import Response

from storefront.auth.tokens import TokenFailure, TokenService
from storefront.core.clock import utcnow
from storefront.core.config import Settings
from storefront.core.logging_config import log_security_event
from storefront.db.base import new_uuid
from storefront.db.models import UserSession
from storefront.db.session import SessionFactory, session_scope

logger = logging.getLogger(__name__)

_FAILURE_EVENTS = {
    TokenFailure.EXPIRED: ("token_expired", logging.INFO),
    TokenFailure.SIGNATURE_INVALID: ("token_forged", logging.WARNING),
    TokenFailure.MALFORMED: ("token_malformed", logging.WARNING),
}


@dataclass(frozen=True)
class SessionRecord:
    id: str
    user_id: str
    token: str
    expires_at: datetime
    created_at: Optional[datetime] = None


class SessionRepository(ABC):
    """Persistence for session rows. Timestamps are naive UTC."""

    @abstractmethod
    def create(self, user_id: str, token: str, expires_at: datetime) -> SessionRecord:
        pass

    @abstractmethod
    def find_by_token(self, token: str, now: datetime) -> Optional[SessionRecord]:
        """Return the row for ``token`` only if ``expires_at > now``."""

    @abstractmethod
    def delete(self, token: str) -> bool:
        pass

    @abstractmethod
    def delete_for_user(self, user_id: str) -> int:
        pass

    @abstractmethod
    def sweep_expired(self, now: datetime) -> int:
        pass


class SqlAlchemySessionRepository(SessionRepository):
    """Session rows in the relational database."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    @staticmethod
    def _to_record(row: UserSession) -> SessionRecord:
        return SessionRecord(
            id=row.id,
            user_id=row.user_id,
            token=row.token,
            expires_at=row.expires_at,
            created_at=row.created_at,
        )

    def create(self, user_id: str, token: str, expires_at: datetime) -> SessionRecord:
        with session_scope(self._session_factory) as db:
            row = UserSession(
                id=new_uuid(), user_id=user_id, token=token, expires_at=expires_at
            )
            db.add(row)
        return SessionRecord(id=row.id, user_id=user_id, token=token, expires_at=expires_at)

    def find_by_token(self, token: str, now: datetime) -> Optional[SessionRecord]:
        with session_scope(self._session_factory) as db:
            row = db.scalar(
                select(UserSession)
                .where(UserSession.token == token, UserSession.expires_at > now)
                .limit(1)
            )
            return self._to_record(row) if row else None

    def delete(self, token: str) -> bool:
        with session_scope(self._session_factory) as db:
            result = db.execute(delete(UserSession).where(UserSession.token == token))
            return result.rowcount > 0

    def delete_for_user(self, user_id: str) -> int:
        with session_scope(self._session_factory) as db:
            result = db.execute(delete(UserSession).where(UserSession.user_id == user_id))
            return result.rowcount

    def sweep_expired(self, now: datetime) -> int:
        with session_scope(self._session_factory) as db:
            result = db.execute(delete(UserSession).where(UserSession.expires_at <= now))
            return result.rowcount


class InMemorySessionRepository(SessionRepository):
    """Lock-guarded session table for tests and single-process tooling."""

    def __init__(self):
        self._rows: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(self, user_id: str, token: str, expires_at: datetime) -> SessionRecord:
        record = SessionRecord(
            id=new_uuid(), user_id=user_id, token=token,
            expires_at=expires_at, created_at=utcnow(),
        )
        with self._lock:
            self._rows[token] = record
        return record

    def find_by_token(self, token: str, now: datetime) -> Optional[SessionRecord]:
        with self._lock:
            record = self._rows.get(token)
        if record is None or record.expires_at <= now:
            return None
        return record

    def delete(self, token: str) -> bool:
        with self._lock:
            return self._rows.pop(token, None) is not None

    def delete_for_user(self, user_id: str) -> int:
        with self._lock:
            tokens = [t for t, r in self._rows.items() if r.user_id == user_id]
            for token in tokens:
                del self._rows[token]
            return len(tokens)

    def sweep_expired(self, now: datetime) -> int:
        with self._lock:
            tokens = [t for t, r in self._rows.items() if r.expires_at <= now]
            for token in tokens:
                del self._rows[token]
            return len(tokens)

    def __len__(self) -> int:
        return len(self._rows)


class SessionStore:
    """Creates, resolves and revokes sessions and manages the session cookie."""

    def __init__(
        self,
        repository: SessionRepository,
        token_service: TokenService,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.token_service = token_service
        self.settings = settings
        self._clock = clock

    @property
    def cookie_name(self) -> str:
        return self.settings.session_cookie_name

    def create(self, user_id: str, response: Optional[Response] = None) -> str:
        """
        Start a session for ``user_id``.

        Args:
            user_id: Authenticated user
            response: When given, the session cookie is set on it

        Returns:
            The signed session token
        """
        lifetime = timedelta(days=self.settings.session_lifetime_days)
        token = self.token_service.sign(user_id, lifetime)
        record = self.repository.create(user_id, token, self._clock() + lifetime)

        if response is not None:
            self.set_cookie(response, token)

        logger.info("Session created", extra={"user_id": user_id, "session_id": record.id})
        return token

    def lookup(self, token: Optional[str], ip_address: Optional[str] = None) -> Optional[SessionRecord]:
        """Resolve ``token`` to its live session row, or None."""
        if not token:
            return None

        verification = self.token_service.verify(token)
        if not verification.ok:
            event_type, level = _FAILURE_EVENTS[verification.failure]
            log_security_event(
                event_type,
                f"Session token rejected ({verification.failure.value})",
                ip_address=ip_address,
                level=level,
            )
            return None

        claims = verification.claims
        record = self.repository.find_by_token(token, self._clock())
        if record is None:
            log_security_event(
                "session_not_found",
                "Valid token without a live session",
                user_id=claims.user_id,
                ip_address=ip_address,
            )
            return None

        if record.user_id != claims.user_id:
            log_security_event(
                "session_subject_mismatch",
                "Session row belongs to a different user than the token",
                user_id=claims.user_id,
                ip_address=ip_address,
                level=logging.WARNING,
            )
            return None

        return record

    def delete(self, token: Optional[str], response: Optional[Response] = None) -> bool:
        """Revoke the session for ``token``; unknown tokens are a no-op."""
        deleted = self.repository.delete(token) if token else False
        if response is not None:
            self.clear_cookie(response)
        if deleted:
            logger.info("Session revoked")
        return deleted

    def delete_all_for_user(self, user_id: str) -> int:
        count = self.repository.delete_for_user(user_id)
        log_security_event(
            "sessions_revoked",
            "All sessions revoked for user",
            user_id=user_id,
            extra_data={"session_count": count},
        )
        return count

    def sweep_expired(self) -> int:
        count = self.repository.sweep_expired(self._clock())
        logger.info("Expired sessions swept", extra={"deleted_count": count})
        return count

    def set_cookie(self, response: Response, token: str) -> None:
        max_age = self.settings.session_lifetime_seconds
        response.set_cookie(
            self.cookie_name,
            token,
            max_age=max_age,
            expires=max_age,
            path="/",
            secure=self.settings.is_production,
            httponly=True,
            samesite="lax",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            self.cookie_name,
            path="/",
            secure=self.settings.is_production,
            httponly=True,
            samesite="lax",
        )
