"""
Security tests for structured logging

Sensitive extra fields are redacted by the JSON formatter, and security
events carry the correlation ID of the request that produced them.
"""

import json
import logging

import pytest

from storefront.core.logging_config import (
    StructuredFormatter,
    correlation_id_ctx,
    get_correlation_id,
    log_security_event,
)
from tests.utils.helpers import security_events


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("storefront.test", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    @pytest.mark.parametrize("field", [
        "password", "secret_key", "session_token", "aws_secret_access_key",
        "cookie_header", "authorization",
    ])
    def test_sensitive_fields_redacted(self, field):
        output = json.loads(StructuredFormatter().format(_record(**{field: "s3cr3t-value"})))

        assert output["extra"][field] == "[REDACTED]"
        assert "s3cr3t-value" not in json.dumps(output)

    def test_regular_fields_kept(self):
        output = json.loads(StructuredFormatter().format(_record(bucket="gallery-images", object_key="u/S1/1-a.jpg")))

        assert output["extra"]["bucket"] == "gallery-images"
        assert output["extra"]["object_key"] == "u/S1/1-a.jpg"
        assert output["message"] == "hello"
        assert output["level"] == "INFO"

    def test_include_sensitive_opt_in(self):
        output = json.loads(StructuredFormatter(include_sensitive=True).format(_record(password="visible")))
        assert output["extra"]["password"] == "visible"

    def test_correlation_id_included(self):
        token = correlation_id_ctx.set("corr-42")
        try:
            output = json.loads(StructuredFormatter().format(_record()))
        finally:
            correlation_id_ctx.reset(token)

        assert output["correlation_id"] == "corr-42"


class TestSecurityEvents:
    def test_event_fields(self, caplog):
        token = correlation_id_ctx.set("corr-7")
        try:
            with caplog.at_level(logging.INFO, logger="security.events"):
                log_security_event(
                    "token_forged",
                    "Session token rejected",
                    user_id="u-1",
                    ip_address="203.0.113.7",
                    level=logging.WARNING,
                    extra_data={"category": "gallery"},
                )
        finally:
            correlation_id_ctx.reset(token)

        (record,) = security_events(caplog, "token_forged")
        assert record.levelno == logging.WARNING
        assert record.user_id == "u-1"
        assert record.ip_address == "203.0.113.7"
        assert record.category == "gallery"
        assert record.correlation_id == "corr-7"

    def test_get_correlation_id_creates_one(self):
        token = correlation_id_ctx.set(None)
        try:
            first = get_correlation_id()
            assert first
            assert get_correlation_id() == first
        finally:
            correlation_id_ctx.reset(token)

    def test_failed_login_logged_without_password(self, client, caplog):
        with caplog.at_level(logging.INFO):
            client.post("/api/auth/login", json={"email": "eve@example.com", "password": "hunter2-hunter2"})

        assert security_events(caplog, "login_failed")
        assert all("hunter2-hunter2" not in r.getMessage() for r in caplog.records)

    def test_forged_cookie_logged(self, anonymous_client, caplog):
        from jose import jwt

        forged = jwt.encode({"sub": "admin", "exp": 4_102_444_800}, "x" * 40 + "abcdefgh", algorithm="HS256")

        with caplog.at_level(logging.INFO):
            response = anonymous_client.get("/api/auth/me", headers={"Cookie": f"auth_token={forged}"})

        assert response.status_code == 401
        assert security_events(caplog, "token_forged")

    def test_upload_identity_mismatch_logged(self, client, caplog):
        from tests.utils.helpers import register, upload

        register(client)
        with caplog.at_level(logging.INFO):
            upload(client, "gallery", {"userId": "victim", "setupId": "S1"})

        assert security_events(caplog, "upload_identity_mismatch")

    def test_reset_link_never_logged(self, app, client, caplog):
        from storefront.auth.mailer import LoggingMailer
        from tests.utils.helpers import register

        links = []

        class CapturingLoggingMailer(LoggingMailer):
            def send_password_reset(self, email, link):
                links.append(link)
                super().send_password_reset(email, link)

        app.state.credentials.mailer = CapturingLoggingMailer()
        register(client)

        with caplog.at_level(logging.DEBUG):
            response = client.post("/api/auth/password-reset/request", json={"email": "alice@example.com"})

        assert response.status_code == 202
        token = links[0].rsplit("token=", 1)[1]
        assert security_events(caplog, "password_reset_requested")
        assert "Password reset email queued" in caplog.text
        assert all(token not in r.getMessage() and token not in str(r.__dict__) for r in caplog.records)
