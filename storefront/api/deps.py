"""FastAPI dependencies resolving the services wired onto ``app.state``."""

from typing import Optional

from fastapi import Request

from storefront.auth.credentials import CredentialService
from storefront.auth.gate import AuthorizationGate
from storefront.auth.sessions import SessionStore
from storefront.auth.users import UserRepository
from storefront.core.limiter import RateLimiter
from storefront.uploads.storage import ObjectStorageClient


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_user_repository(request: Request) -> UserRepository:
    return request.app.state.users


def get_credentials(request: Request) -> CredentialService:
    return request.app.state.credentials


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_storage(request: Request) -> ObjectStorageClient:
    return request.app.state.storage


def get_client_ip(request: Request) -> str:
    """Peer address, falling back to the first X-Forwarded-For hop."""
    if request.client and request.client.host:
        return request.client.host
    forwarded = request.headers.get("x-forwarded-for", "")
    return forwarded.split(",")[0].strip()


def get_request_token(request: Request) -> Optional[str]:
    """Session cookie first, then an ``Authorization: Bearer`` header."""
    token = request.cookies.get(request.app.state.settings.session_cookie_name)
    if token:
        return token

    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def get_gate(request: Request) -> AuthorizationGate:
    """One gate per request; FastAPI caches dependencies within a request."""
    return AuthorizationGate(
        sessions=get_session_store(request),
        users=get_user_repository(request),
        token=get_request_token(request),
        ip_address=get_client_ip(request),
    )
