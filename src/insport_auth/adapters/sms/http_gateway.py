"""
SMS gateway adapter - Implements OtpChannel protocol for phone numbers.

Posts ``{"to": <phone>, "message": <text>}`` to an HTTP SMS gateway
with the API key in the Authorization header. Non-2xx responses,
timeouts and transport errors are reported as ChannelDeliveryFailed.
"""

import logging

import httpx

from insport_auth.domain.exceptions import ChannelDeliveryFailed
from insport_auth.domain.identifiers import Identifier

logger = logging.getLogger(__name__)


class HttpSmsGatewayChannel:
    """Delivers OTPs by SMS. Uses structural subtyping."""

    def __init__(self, url: str, api_key: str, client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self._url = url
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def send_code(self, identifier: Identifier, code: str) -> None:
        payload = {"to": identifier.value, "message": f"Your OTP code is {code}"}
        try:
            response = self._client.post(
                self._url,
                json=payload,
                headers={"Authorization": self._api_key},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("SMS gateway rejected OTP: status %s", e.response.status_code)
            raise ChannelDeliveryFailed("Failed to send OTP") from e
        except httpx.HTTPError as e:
            logger.error("SMS gateway unreachable: %s", e)
            raise ChannelDeliveryFailed("Failed to send OTP") from e
        logger.info("OTP sent via SMS gateway to %s", identifier.masked())

    def close(self) -> None:
        self._client.close()
