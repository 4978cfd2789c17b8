"""
OTP generator and channel sender.

Issues fixed-length numeric codes, keeps them encrypted in the session
store for a bounded lifetime, and dispatches the plaintext through the
channel that serves the identifier's kind (SMS for phones, email for
email addresses).

OTP lifecycle:
    issue()  -> record stored (TTL), attempt counter reset, cooldown started,
                code dispatched; on delivery failure the record is deleted
    verify() -> SUCCESS deletes the record (single use)
                INVALID_CODE keeps the record for a retry until TTL
                LOCKED burns the record after too many wrong guesses
                NOT_FOUND when nothing is live
"""

import hmac
import logging
import secrets
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from .crypto import OtpCipher
from .exceptions import ChannelDeliveryFailed
from .identifiers import Identifier, IdentifierKind
from .ports import OtpChannel, OtpCheck, RateLimiter, SessionStore

logger = logging.getLogger(__name__)

OTP_NAMESPACE = "otp"
COOLDOWN_NAMESPACE = "otp-cooldown"
ATTEMPTS_NAMESPACE = "otp-attempts"


@dataclass(frozen=True)
class OtpPolicy:
    length: int = 6
    expiration_seconds: int = 300
    resend_interval_seconds: int = 60
    max_attempts: int = 5


class OtpService:
    """Domain service for OTP issuance and verification."""

    def __init__(
        self,
        store: SessionStore,
        limiter: RateLimiter,
        cipher: OtpCipher,
        channels: Mapping[IdentifierKind, OtpChannel],
        policy: OtpPolicy = OtpPolicy(),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._limiter = limiter
        self._cipher = cipher
        self._channels = dict(channels)
        self.policy = policy
        self._clock = clock

    def issue(self, identifier: Identifier) -> None:
        """
        Generate, store and deliver a fresh OTP for ``identifier``.

        Any previously live code for the identifier is replaced.

        Raises:
            ChannelDeliveryFailed: If the channel failed; no usable code remains
        """
        channel = self._channel_for(identifier)
        code = self._generate_code()

        self._store.set(
            identifier.key(OTP_NAMESPACE),
            {"code": self._cipher.encrypt(code), "issued_at": self._clock()},
            self.policy.expiration_seconds,
        )
        self._limiter.reset(identifier.key(ATTEMPTS_NAMESPACE))
        self._store.set(
            identifier.key(COOLDOWN_NAMESPACE),
            {"issued_at": self._clock()},
            self.policy.resend_interval_seconds,
        )

        try:
            channel.send_code(identifier, code)
        except ChannelDeliveryFailed:
            self._store.delete(
                identifier.key(OTP_NAMESPACE), identifier.key(COOLDOWN_NAMESPACE)
            )
            logger.warning("OTP delivery failed via %s channel", identifier.kind.value)
            raise

        logger.info("OTP issued via %s channel for %s", identifier.kind.value, identifier.masked())

    def verify(self, identifier: Identifier, candidate: str) -> OtpCheck:
        """
        Check ``candidate`` against the live OTP for ``identifier``.

        Every attempt on a live code counts towards ``max_attempts``.
        """
        otp_key = identifier.key(OTP_NAMESPACE)
        record = self._store.get(otp_key)
        if record is None:
            return OtpCheck.NOT_FOUND

        decision = self._limiter.hit(
            identifier.key(ATTEMPTS_NAMESPACE),
            self.policy.max_attempts,
            self.policy.expiration_seconds,
        )
        if not decision.allowed:
            self._store.delete(otp_key)
            logger.warning("OTP burned after too many attempts for %s", identifier.masked())
            return OtpCheck.LOCKED

        stored_code = self._cipher.decrypt(record.get("code", ""))
        if stored_code is None:
            self._store.delete(otp_key)
            return OtpCheck.NOT_FOUND

        if not hmac.compare_digest(stored_code.encode(), candidate.strip().encode()):
            return OtpCheck.INVALID_CODE

        self._store.delete(otp_key)
        self._limiter.reset(identifier.key(ATTEMPTS_NAMESPACE))
        logger.info("OTP verified for %s", identifier.masked())
        return OtpCheck.SUCCESS

    def cooldown_active(self, identifier: Identifier) -> bool:
        return self._store.exists(identifier.key(COOLDOWN_NAMESPACE))

    def discard(self, identifier: Identifier) -> None:
        """Drop any live code and cooldown for ``identifier``. Idempotent."""
        self._store.delete(identifier.key(OTP_NAMESPACE), identifier.key(COOLDOWN_NAMESPACE))
        self._limiter.reset(identifier.key(ATTEMPTS_NAMESPACE))

    def _channel_for(self, identifier: Identifier) -> OtpChannel:
        try:
            return self._channels[identifier.kind]
        except KeyError:
            raise ChannelDeliveryFailed(
                f"No delivery channel configured for {identifier.kind.value}"
            ) from None

    def _generate_code(self) -> str:
        """
        Generate a cryptographically secure numeric code.

        secrets.randbelow is uniform over [0, 10**length), so there is no
        modulo bias. Returns string to preserve leading zeros.
        """
        return str(secrets.randbelow(10**self.policy.length)).zfill(self.policy.length)
