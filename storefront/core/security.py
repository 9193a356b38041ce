"""
Signing-secret checks and response hardening.

Session tokens are HMAC-signed with ``SECRET_KEY``, so a guessable or short
key lets anyone mint sessions. Settings refuse to load with one.
"""

import logging
import secrets

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# HS256 wants at least as many key bytes as the digest
MIN_SECRET_LENGTH = 32
MIN_DISTINCT_CHARS = 8

KNOWN_PLACEHOLDERS = frozenset({
    "your-secret-key-change-this-in-production",
    "your-secret-key-here-change-in-production",
    "changeme",
    "change-me",
    "secret",
    "jwt-secret",
    "session-secret",
    "password",
})


def generate_secure_secret_key(nbytes: int = 48) -> str:
    """Random URL-safe signing secret (64 characters for the default 48 bytes)."""
    return secrets.token_urlsafe(nbytes)


def validate_secret_key(secret_key: str) -> None:
    """
    Reject signing secrets that are empty, short, placeholders or repetitive.

    Raises:
        ValueError: With a message naming the failed check
    """
    if not secret_key:
        raise ValueError("SECRET_KEY is empty")

    if secret_key.strip().lower() in KNOWN_PLACEHOLDERS:
        raise ValueError("SECRET_KEY is an insecure default placeholder")

    if len(secret_key) < MIN_SECRET_LENGTH:
        raise ValueError(f"SECRET_KEY must be at least {MIN_SECRET_LENGTH} characters")

    if len(set(secret_key)) < MIN_DISTINCT_CHARS:
        raise ValueError("SECRET_KEY has too little entropy")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Hardening headers for API responses; HSTS only when serving over TLS in production."""

    def __init__(self, app, hsts: bool = False):
        super().__init__(app)
        self.headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
        if hsts:
            self.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        return response
