"""
Session token signing and verification.

Tokens are compact HS256 JWTs carrying ``sub`` (user id), ``iat``, ``exp`` and
a random ``jti``. Verification never raises for bad input; it returns a
:class:`TokenVerification` describing either the claims or why they were
rejected.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Union

from jose import JWTError, jwt

from storefront.core.config import Settings

Clock = Callable[[], float]


class TokenFailure(str, Enum):
    MALFORMED = "malformed"
    EXPIRED = "expired"
    SIGNATURE_INVALID = "signature_invalid"


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    issued_at: datetime
    expires_at: datetime
    token_id: Optional[str] = None


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of :meth:`TokenService.verify`; exactly one field is set."""

    claims: Optional[TokenClaims] = None
    failure: Optional[TokenFailure] = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


def _from_timestamp(value: Union[int, float]) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class TokenService:
    """Stateless signer/verifier; safe to share across requests."""

    def __init__(self, settings: Settings, clock: Clock = time.time):
        self._secret = settings.secret_key.get_secret_value()
        self._algorithm = settings.jwt_algorithm
        self._clock = clock

    def sign(self, user_id: str, ttl: timedelta) -> str:
        """
        Mint a token for ``user_id`` valid for ``ttl``.

        Args:
            user_id: Subject of the token
            ttl: Lifetime measured from now

        Returns:
            Compact serialized JWT
        """
        if not user_id:
            raise ValueError("user_id is required")

        issued_at = int(self._clock())
        claims = {
            "sub": user_id,
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: Optional[str]) -> TokenVerification:
        """Check signature, then shape, then expiry of ``token``."""
        if not token or not isinstance(token, str):
            return TokenVerification(failure=TokenFailure.MALFORMED)

        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            return TokenVerification(failure=TokenFailure.MALFORMED)

        try:
            # Expiry is checked below against the injected clock
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return TokenVerification(failure=TokenFailure.SIGNATURE_INVALID)

        subject = payload.get("sub")
        expires = payload.get("exp")
        if not isinstance(subject, str) or not subject or not isinstance(expires, (int, float)):
            return TokenVerification(failure=TokenFailure.MALFORMED)

        if self._clock() >= expires:
            return TokenVerification(failure=TokenFailure.EXPIRED)

        issued = payload.get("iat")
        claims = TokenClaims(
            user_id=subject,
            issued_at=_from_timestamp(issued if isinstance(issued, (int, float)) else expires),
            expires_at=_from_timestamp(expires),
            token_id=payload.get("jti"),
        )
        return TokenVerification(claims=claims)
