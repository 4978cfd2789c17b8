"""
Console OTP channel adapter - Implements OtpChannel protocol.

This module provides a console-based implementation of the domain's
OTP channel port, logging codes instead of sending them. Serves both
phone and email identifiers in development.
"""

import logging

from insport_auth.domain.identifiers import Identifier

logger = logging.getLogger(__name__)


class ConsoleOtpChannel:
    """
    Implements OtpChannel protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - prints OTP codes to stdout.
    """

    def send_code(self, identifier: Identifier, code: str) -> None:
        """
        Log the OTP to console (simulates SMS/email delivery).

        The code is logged at INFO level to be visible in docker-compose logs.

        Args:
            identifier: Recipient phone or email (normalized by domain layer)
            code: Numeric OTP
        """
        logger.info("[OTP] %s: %s Code: %s", identifier.kind.value.capitalize(), identifier.value, code)
