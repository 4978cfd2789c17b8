"""
SMTP OTP channel adapter - Implements OtpChannel protocol for email.

Sends the verification code as a plain-text message over SMTP with
STARTTLS. Connection and command timeouts are bounded by configuration.
"""

import logging
import smtplib
from email.message import EmailMessage

from insport_auth.domain.exceptions import ChannelDeliveryFailed
from insport_auth.domain.identifiers import Identifier

logger = logging.getLogger(__name__)


class SmtpEmailChannel:
    """Delivers OTPs by email. Uses structural subtyping."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
        expires_in_minutes: int = 5,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._timeout = timeout
        self._expires_in_minutes = expires_in_minutes

    def build_message(self, identifier: Identifier, code: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = "Your InSport verification code"
        message["From"] = self._sender
        message["To"] = identifier.value
        message.set_content(
            f"Your verification code is {code}.\n"
            f"It expires in {self._expires_in_minutes} minutes. "
            "If you did not request it, you can ignore this email.\n"
        )
        return message

    def send_code(self, identifier: Identifier, code: str) -> None:
        message = self.build_message(identifier, code)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                smtp.starttls()
                if self._username:
                    smtp.login(self._username, self._password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP delivery failed: %s", e)
            raise ChannelDeliveryFailed("Failed to send verification email") from e
