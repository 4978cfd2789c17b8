"""
Secret store and token codec.

- OtpCipher: AES-256-GCM encryption of OTP values at rest (random nonce per call)
- PasswordHasher: argon2id hashing with per-call salt and configured cost
- FlowTokenCodec: signed, time-limited JWTs for the signup flow and for login

Security notes:
- OTP plaintext never reaches the session store; only ``nonce:ciphertext`` does.
- Flow tokens carry the identifier claim and the completed step, never the
  password or the OTP. A token alone never advances the signup state.
"""

import hashlib
import logging
import os
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

import argon2
from argon2.exceptions import InvalidHashError, VerificationError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jose import JWTError, jwt

from .exceptions import InvalidFlowToken, InvalidInput
from .identifiers import Identifier, identifier_of
from .ports import SignupState

logger = logging.getLogger(__name__)

_NONCE_BYTES = 12
_SIGNUP_TOKEN_TYPE = "signup"
_ACCESS_TOKEN_TYPE = "access"


class OtpCipher:
    """
    Symmetric encryption for OTP values at rest.

    Keys that are not exactly 32 bytes are stretched with SHA-256.
    """

    def __init__(self, key: str | bytes) -> None:
        raw = key.encode() if isinstance(key, str) else key
        if len(raw) != 32:
            raw = hashlib.sha256(raw).digest()
        self._aead = AESGCM(raw)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        ciphertext = self._aead.encrypt(nonce, plaintext.encode(), None)
        return f"{nonce.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str | None:
        """Return the plaintext, or None if the value is malformed or tampered with."""
        try:
            nonce_hex, ciphertext_hex = token.split(":", 1)
            plaintext = self._aead.decrypt(
                bytes.fromhex(nonce_hex), bytes.fromhex(ciphertext_hex), None
            )
        except (ValueError, InvalidTag):
            logger.error("OTP ciphertext could not be decrypted")
            return None
        return plaintext.decode()


class PasswordHasher:
    """
    Memory-hard password hashing (argon2id).

    A pre-computed dummy hash lets callers spend the same verification time
    when no account exists, so response timing does not reveal existence.
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self._hasher = argon2.PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=argon2.Type.ID,
        )
        self._dummy_hash = self._hasher.hash(secrets.token_urlsafe(16))

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password_hash: str, password: str) -> bool:
        try:
            return self._hasher.verify(password_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    def verify_dummy(self, password: str) -> bool:
        """Burn one verification against the dummy hash. Always False."""
        self.verify(self._dummy_hash, password)
        return False

    def needs_rehash(self, password_hash: str) -> bool:
        return self._hasher.check_needs_rehash(password_hash)


@dataclass(frozen=True)
class FlowClaims:
    """Decoded flow token."""

    identifier: Identifier
    step: SignupState
    issued_at: int
    expires_at: int
    flow: str | None = None


class FlowTokenCodec:
    """Issues and validates HS256-signed JWTs (python-jose)."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        flow_ttl_seconds: int = 1800,
        access_ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self.flow_ttl_seconds = flow_ttl_seconds
        self.access_ttl_seconds = access_ttl_seconds
        self._clock = clock

    def issue_flow_token(
        self, identifier: Identifier, step: SignupState, flow: str | None = None
    ) -> str:
        """
        Sign a token for one signup step.

        ``flow`` names the signup flow the identifier is being verified
        for; a secondary contact carries the flow of the primary one.
        """
        now = int(self._clock())
        claims = {
            "sub": identifier.value,
            "kind": identifier.kind.value,
            "step": step.value,
            "typ": _SIGNUP_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.flow_ttl_seconds,
        }
        if flow is not None:
            claims["flow"] = flow
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def decode_flow_token(self, token: str) -> FlowClaims:
        """
        Verify signature and expiry of a flow token.

        Raises:
            InvalidFlowToken: If the token is malformed, forged, expired
                or not a signup token
        """
        payload = self._decode(token)
        if payload.get("typ") != _SIGNUP_TOKEN_TYPE:
            raise InvalidFlowToken("Invalid token")
        try:
            identifier = identifier_of(payload["kind"], payload["sub"])
            step = SignupState(payload["step"])
        except (KeyError, ValueError, InvalidInput):
            raise InvalidFlowToken("Invalid token") from None
        return FlowClaims(
            identifier=identifier,
            step=step,
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload.get("exp", 0)),
            flow=payload.get("flow"),
        )

    def issue_access_token(self, user_id: str, role: str) -> str:
        now = int(self._clock())
        claims = {
            "sub": user_id,
            "role": role,
            "typ": _ACCESS_TOKEN_TYPE,
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": now + self.access_ttl_seconds,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def _decode(self, token: str) -> dict:
        try:
            return jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError:
            raise InvalidFlowToken("Invalid or expired token") from None
