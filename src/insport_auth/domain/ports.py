"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure, plus the value types that cross them.
Adapters implement these protocols via structural subtyping.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from .identifiers import Identifier


class SignupState(str, Enum):
    """
    Account-creation state machine states.

    State Transitions (forward-only):
    - AWAITING_IDENTIFIER -> AWAITING_OTP      (create_account)
    - AWAITING_OTP        -> AWAITING_DETAILS  (verify_otp)
    - AWAITING_DETAILS    -> AWAITING_PASSWORD (enter_details)
    - AWAITING_PASSWORD   -> COMPLETE          (set_password)

    create_account restarts a flow from any non-terminal state.
    The state is never stored; it is resolved from session-store evidence.
    """

    AWAITING_IDENTIFIER = "AWAITING_IDENTIFIER"
    AWAITING_OTP = "AWAITING_OTP"
    AWAITING_DETAILS = "AWAITING_DETAILS"
    AWAITING_PASSWORD = "AWAITING_PASSWORD"
    COMPLETE = "COMPLETE"


class OtpCheck(Enum):
    """
    Result of an OTP verification attempt.

    Used by OtpService.verify() to indicate success or specific failure.
    """

    SUCCESS = "success"
    INVALID_CODE = "invalid_code"
    NOT_FOUND = "not_found"
    LOCKED = "locked"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate-limiter hit."""

    allowed: bool
    remaining: int
    reset_after: int  # seconds until the window resets


@dataclass
class Profile:
    first_name: str
    last_name: str
    experience_level: str = "beginner"


@dataclass
class NewAccount:
    """Everything needed to create a User and its UserProfile together."""

    username: str
    password_hash: str
    profile: Profile
    email: str | None = None
    phone: str | None = None
    email_verified: bool = False
    phone_verified: bool = False


@dataclass
class Account:
    """
    Public representation of a created user.

    Never carries the password hash, reset tokens or 2FA secrets.
    """

    id: str
    username: str
    email: str | None
    phone: str | None
    status: str
    role: str
    profile: Profile
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "phone": self.phone,
            "status": self.status,
            "role": self.role,
            "first_name": self.profile.first_name,
            "last_name": self.profile.last_name,
            "experience_level": self.profile.experience_level,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class LoginRecord:
    """Credential row used by the login guard."""

    account: Account
    password_hash: str
    login_attempts: int = 0
    lock_until: datetime | None = None


class SessionStore(Protocol):
    """Port interface for the ephemeral, TTL-bounded key-value store."""

    def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    def get(self, key: str) -> dict[str, Any] | None:
        """Return the live value for ``key`` or None if absent/expired."""
        ...

    def delete(self, *keys: str) -> int:
        """Delete keys. Missing keys are ignored. Returns number deleted."""
        ...

    def exists(self, key: str) -> bool:
        ...


class RateLimiter(Protocol):
    """Port interface for fixed-window request counting."""

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        """
        Atomically count one request against ``key``.

        The first hit in a fresh window starts a window of ``window_seconds``;
        the counter resets when it expires. Requests beyond ``limit`` within
        the window are not allowed.
        """
        ...

    def reset(self, key: str) -> None:
        ...


class OtpChannel(Protocol):
    """Port interface for OTP delivery (SMS gateway, email transport)."""

    def send_code(self, identifier: Identifier, code: str) -> None:
        """
        Deliver ``code`` to ``identifier``.

        Raises:
            ChannelDeliveryFailed: If the external channel rejects or times out
        """
        ...


class UserRepository(Protocol):
    """Port interface for durable User/UserProfile persistence."""

    def identifier_registered(self, identifier: Identifier) -> bool:
        """True if an account already uses this phone or email."""
        ...

    def create_account(self, new_account: NewAccount) -> Account:
        """
        Create User and UserProfile in a single transaction.

        Raises:
            IdentifierAlreadyRegistered: Unique violation on email or phone
            UsernameTaken: Unique violation on username
            AccountPersistenceFailed: Any other aborted transaction
        """
        ...

    def find_login(self, identifier: Identifier) -> LoginRecord | None:
        ...

    def register_failed_login(
        self, user_id: str, max_attempts: int, lock_until: datetime
    ) -> tuple[int, datetime | None]:
        """
        Atomically count a failed login.

        When the incremented count reaches ``max_attempts`` the counter resets
        to zero and ``lock_until`` is stored. Returns (attempts, lock_until).
        """
        ...

    def register_successful_login(self, user_id: str, password_hash: str | None = None) -> None:
        """Reset attempts, clear the lock and stamp last_login (optionally rehash)."""
        ...
