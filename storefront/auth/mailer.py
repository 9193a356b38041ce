"""Outbound account email. Delivery itself belongs to a mail provider integration."""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class Mailer(ABC):
    """Sends the links of the credential lifecycle to an account's address."""

    @abstractmethod
    def send_password_reset(self, email: str, link: str) -> None:
        """Deliver a single-use password reset link."""

    @abstractmethod
    def send_email_verification(self, email: str, link: str) -> None:
        """Deliver an email confirmation link."""


class LoggingMailer(Mailer):
    """Default for deployments without a provider: records the send, never the link."""

    def send_password_reset(self, email: str, link: str) -> None:
        logger.info("Password reset email queued", extra={"recipient_domain": email.rpartition("@")[2]})

    def send_email_verification(self, email: str, link: str) -> None:
        logger.info("Verification email queued", extra={"recipient_domain": email.rpartition("@")[2]})
