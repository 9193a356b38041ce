"""
Test helper functions for common testing operations

These helpers provide a controllable clock, account setup through the HTTP
API, and multipart upload shortcuts shared across the test suite.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from fastapi.testclient import TestClient

from storefront.auth.mailer import Mailer
from storefront.core.config import Settings
from storefront.core.security import generate_secure_secret_key

PUBLIC_BASE_URL = "https://media.example.com"
DEFAULT_PASSWORD = "correct-horse-battery"
MB = 1_000_000


class FakeClock:
    """Manually advanced clock usable as an epoch-seconds or a datetime source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def utcnow(self) -> datetime:
        return datetime.fromtimestamp(self.now, tz=timezone.utc).replace(tzinfo=None)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMailer(Mailer):
    """Keeps every outgoing message so tests can follow the emailed links"""

    def __init__(self):
        self.sent: List[Tuple[str, str, str]] = []

    def send_password_reset(self, email: str, link: str) -> None:
        self.sent.append(("password_reset", email, link))

    def send_email_verification(self, email: str, link: str) -> None:
        self.sent.append(("email_verification", email, link))

    def last_token(self, kind: str, email: Optional[str] = None) -> str:
        """Token query parameter of the newest ``kind`` message (to ``email``, if given)"""
        for sent_kind, recipient, link in reversed(self.sent):
            if sent_kind == kind and (email is None or recipient == email):
                return parse_qs(urlsplit(link).query)["token"][0]
        raise AssertionError(f"No {kind} email sent")

    def count(self, kind: str) -> int:
        return sum(1 for sent_kind, _, _ in self.sent if sent_kind == kind)


class FakeMillisClock:
    """Millisecond clock for the rate limiter"""

    def __init__(self, start: int = 0):
        self.now = start

    def __call__(self) -> int:
        return self.now


def register(
    client: TestClient,
    email: str = "alice@example.com",
    password: str = DEFAULT_PASSWORD,
    full_name: Optional[str] = "Alice",
) -> Dict[str, Any]:
    """Register through the API (the client keeps the session cookie)"""
    response = client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "full_name": full_name},
    )
    assert response.status_code == 201, response.text
    return response.json()["user"]


def login(client: TestClient, email: str, password: str = DEFAULT_PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def make_admin(client: TestClient, user_id: str) -> None:
    client.app.state.users.set_admin(user_id, True)


def upload(
    client: TestClient,
    category: str,
    fields: Dict[str, str],
    content: bytes = b"\xff\xd8\xff\xe0fake-jpeg",
    filename: str = "photo.jpg",
    content_type: str = "image/jpeg",
):
    return client.post(
        f"/api/upload/{category}",
        files={"file": (filename, content, content_type)},
        data=fields,
    )


def assert_error(response, status_code: int, error_code: Optional[str] = None) -> None:
    """Assert the JSON error envelope produced by the exception handler"""
    assert response.status_code == status_code, response.text
    if error_code is not None:
        assert response.json()["error"] == error_code


def security_events(caplog, event_type: str) -> list:
    return [r for r in caplog.records if getattr(r, "event_type", None) == event_type]


def build_settings(db_path: str, **overrides) -> Settings:
    """Explicit test settings; nothing is read from a .env file"""
    values = {
        "secret_key": generate_secure_secret_key(),
        "environment": "test",
        "database_url": f"sqlite:///{db_path}",
        "storage_public_base_url": PUBLIC_BASE_URL + "/",
        "r2_account_id": "test-account",
        "r2_access_key_id": "test-access-key-id",
        "r2_secret_access_key": "test-secret-access-key",
        "redis_url": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)
