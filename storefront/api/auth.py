"""
Authentication API endpoints.

Registration and login exchange credentials for a server-side session carried
in an HttpOnly cookie. Every endpoint that accepts a password or sends email
is throttled by the ``auth`` rate rule to slow brute force and credential
stuffing. Password change and reset revoke every session of the account.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field, field_validator, model_validator

from storefront.api.deps import (
    get_client_ip,
    get_credentials,
    get_gate,
    get_rate_limiter,
    get_request_token,
    get_session_store,
    get_user_repository,
)
from storefront.auth.credentials import CredentialService
from storefront.auth.gate import AuthorizationGate
from storefront.auth.sessions import SessionStore
from storefront.auth.users import EMAIL_PATTERN, MIN_PASSWORD_LENGTH, UserRepository
from storefront.core.errors import AuthenticationError
from storefront.core.limiter import RateLimiter
from storefront.core.logging_config import log_security_event

logger = logging.getLogger(__name__)

# Create router for authentication endpoints
router = APIRouter(prefix="/api/auth", tags=["authentication"])


def _check_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email address")
    return v


class Credentials(BaseModel):
    """Email/password pair."""

    email: str = Field(..., max_length=320, description="Account email")
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=256)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _check_email(v)


class RegisterRequest(Credentials):
    full_name: Optional[str] = Field(None, max_length=200)


class UserOut(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    email_verified: bool = False


class UserResponse(BaseModel):
    user: UserOut
    is_admin: bool = False


class RevokedResponse(BaseModel):
    success: bool = True
    revoked: int = 0


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., max_length=256)
    new_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=256)


class PasswordResetRequest(BaseModel):
    email: str = Field(..., max_length=320)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _check_email(v)


class PasswordResetConfirm(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=256)
    confirm_password: str = Field(..., max_length=256)

    @model_validator(mode="after")
    def check_passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)


class AcceptedResponse(BaseModel):
    success: bool = True


class TokenStatusResponse(BaseModel):
    valid: bool


class VerifiedResponse(BaseModel):
    verified: bool = True


@router.post("/register", response_model=UserResponse, status_code=201)
def register(
    request: Request,
    response: Response,
    payload: RegisterRequest,
    users: UserRepository = Depends(get_user_repository),
    sessions: SessionStore = Depends(get_session_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
    credentials: CredentialService = Depends(get_credentials),
):
    """
    Create an account, sign the new user in and email a confirmation link.

    Raises:
        ConflictError: If the email is already registered (409)
        RateLimitError: If the caller exceeded the auth rate rule (429)
    """
    limiter.check("auth", get_client_ip(request))

    user = users.create_user(payload.email, payload.password, payload.full_name)
    sessions.create(user.id, response)
    credentials.issue_email_verification(user.id)

    return UserResponse(user=UserOut(id=user.id, email=user.email, full_name=user.full_name))


@router.post("/login", response_model=UserResponse)
def login(
    request: Request,
    response: Response,
    payload: Credentials,
    users: UserRepository = Depends(get_user_repository),
    sessions: SessionStore = Depends(get_session_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Exchange credentials for a session cookie."""
    client_ip = get_client_ip(request)
    limiter.check("auth", client_ip)

    user = users.authenticate(payload.email, payload.password)
    if user is None:
        log_security_event(
            "login_failed",
            "Invalid credentials presented",
            ip_address=client_ip,
            level=logging.WARNING,
        )
        raise AuthenticationError("Invalid email or password")

    sessions.create(user.id, response)
    log_security_event("login_succeeded", "User signed in", user_id=user.id, ip_address=client_ip)

    return UserResponse(
        user=UserOut(
            id=user.id, email=user.email, full_name=user.full_name, email_verified=user.email_verified
        ),
        is_admin=users.is_admin(user.id),
    )


@router.post("/logout", response_model=RevokedResponse)
def logout(
    request: Request,
    response: Response,
    sessions: SessionStore = Depends(get_session_store),
):
    """Delete the current session row and clear the cookie."""
    deleted = sessions.delete(get_request_token(request), response)
    return RevokedResponse(revoked=1 if deleted else 0)


@router.post("/logout-all", response_model=RevokedResponse)
def logout_all(
    response: Response,
    gate: AuthorizationGate = Depends(get_gate),
    sessions: SessionStore = Depends(get_session_store),
):
    """Revoke every session of the current user, on every device."""
    user = gate.require_user()
    count = sessions.delete_all_for_user(user.id)
    sessions.clear_cookie(response)
    return RevokedResponse(revoked=count)


@router.get("/me", response_model=UserResponse)
def me(gate: AuthorizationGate = Depends(get_gate)):
    user = gate.require_user()
    return UserResponse(
        user=UserOut(
            id=user.id, email=user.email, full_name=user.full_name, email_verified=user.email_verified
        ),
        is_admin=gate.is_admin(),
    )


@router.post("/password", response_model=RevokedResponse)
def change_password(
    request: Request,
    response: Response,
    payload: PasswordChangeRequest,
    gate: AuthorizationGate = Depends(get_gate),
    sessions: SessionStore = Depends(get_session_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
    credentials: CredentialService = Depends(get_credentials),
):
    """
    Change the password; every existing session is revoked and this
    device gets a fresh one.

    Raises:
        AuthenticationError: No session, or wrong current password (401)
    """
    user = gate.require_user()
    client_ip = get_client_ip(request)
    limiter.check("auth", client_ip, user.id)

    revoked = credentials.change_password(
        user.id, payload.current_password, payload.new_password, ip_address=client_ip
    )
    sessions.create(user.id, response)
    return RevokedResponse(revoked=revoked)


@router.post("/password-reset/request", response_model=AcceptedResponse, status_code=202)
def request_password_reset(
    request: Request,
    payload: PasswordResetRequest,
    limiter: RateLimiter = Depends(get_rate_limiter),
    credentials: CredentialService = Depends(get_credentials),
):
    """Email a reset link. The answer is the same whether or not the address is registered."""
    client_ip = get_client_ip(request)
    limiter.check("auth", client_ip)

    credentials.request_password_reset(payload.email, ip_address=client_ip)
    return AcceptedResponse()


@router.get("/password-reset/verify", response_model=TokenStatusResponse)
def verify_password_reset_token(
    token: Optional[str] = None,
    credentials: CredentialService = Depends(get_credentials),
):
    """Whether a reset link is still usable, for the reset form to check before rendering."""
    return TokenStatusResponse(valid=credentials.verify_reset_token(token) is not None)


@router.post("/password-reset", response_model=RevokedResponse)
def reset_password(
    request: Request,
    response: Response,
    payload: PasswordResetConfirm,
    sessions: SessionStore = Depends(get_session_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
    credentials: CredentialService = Depends(get_credentials),
):
    """
    Set a new password with an emailed token. All sessions end, including the caller's.

    Raises:
        InvalidTokenError: Unknown, used or expired token (400)
    """
    client_ip = get_client_ip(request)
    limiter.check("auth", client_ip)

    revoked = credentials.reset_password(payload.token, payload.password, ip_address=client_ip)
    sessions.clear_cookie(response)
    return RevokedResponse(revoked=revoked)


@router.post("/verify-email", response_model=VerifiedResponse)
def verify_email(
    payload: TokenRequest,
    credentials: CredentialService = Depends(get_credentials),
):
    """
    Confirm the address behind an emailed link.

    Raises:
        InvalidTokenError: Unknown or already used token (400)
    """
    credentials.verify_email(payload.token)
    return VerifiedResponse()


@router.post("/verify-email/resend", response_model=AcceptedResponse, status_code=202)
def resend_verification_email(
    request: Request,
    gate: AuthorizationGate = Depends(get_gate),
    limiter: RateLimiter = Depends(get_rate_limiter),
    credentials: CredentialService = Depends(get_credentials),
):
    """Send a new confirmation link; earlier links stop working."""
    user = gate.require_user()
    limiter.check("auth", get_client_ip(request), user.id)

    credentials.issue_email_verification(user.id)
    return AcceptedResponse()
