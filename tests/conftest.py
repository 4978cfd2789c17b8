"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock for TTL and lockout behaviour
- In-memory session store / rate limiter adapters
- A recording OTP channel and an in-memory user repository
- Fully wired signup and login services
"""

import threading
import time
import uuid
from datetime import datetime, timezone

import pytest

from insport_auth.adapters.session import InMemoryRateLimiter, InMemorySessionStore
from insport_auth.domain import (
    FlowTokenCodec,
    IdentifierKind,
    LockoutPolicy,
    LoginService,
    OtpCipher,
    OtpPolicy,
    OtpService,
    PasswordHasher,
    SignupContext,
    SignupPolicy,
    SignupService,
)
from insport_auth.domain.exceptions import (
    ChannelDeliveryFailed,
    IdentifierAlreadyRegistered,
    UsernameTaken,
)
from insport_auth.domain.identifiers import Identifier
from insport_auth.domain.ports import Account, LoginRecord, NewAccount, Profile

TEST_JWT_SECRET = "test-jwt-secret"
TEST_OTP_KEY = "test-otp-encryption-key"


class FakeClock:
    """
    Manually advanced clock.

    Starts at the real time because python-jose checks ``exp`` against
    the wall clock.
    """

    def __init__(self, start: float | None = None) -> None:
        self.now = float(int(time.time())) if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingChannel:
    """OtpChannel that keeps every code it was asked to deliver."""

    def __init__(self) -> None:
        self.sent: list[tuple[Identifier, str]] = []
        self.fail = False

    def send_code(self, identifier: Identifier, code: str) -> None:
        if self.fail:
            raise ChannelDeliveryFailed("Failed to send OTP")
        self.sent.append((identifier, code))

    def last_code(self, identifier: Identifier) -> str:
        for sent_to, code in reversed(self.sent):
            if sent_to == identifier:
                return code
        raise AssertionError(f"no code sent to {identifier.value}")


class InMemoryUserRepository:
    """
    UserRepository fake with the uniqueness rules of the users table.

    The lock plays the part of the database's unique constraints.
    """

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self.rows: dict[str, dict] = {}
        self.reserved_usernames: set[str] = set()

    def identifier_registered(self, identifier: Identifier) -> bool:
        column = "email" if identifier.kind is IdentifierKind.EMAIL else "phone"
        with self._lock:
            return any(row[column] == identifier.value for row in self.rows.values())

    def create_account(self, new_account: NewAccount) -> Account:
        with self._lock:
            usernames = {row["username"] for row in self.rows.values()} | self.reserved_usernames
            if new_account.username in usernames:
                raise UsernameTaken(new_account.username)
            for row in self.rows.values():
                if new_account.email and row["email"] == new_account.email:
                    raise IdentifierAlreadyRegistered("User with this identifier already exists")
                if new_account.phone and row["phone"] == new_account.phone:
                    raise IdentifierAlreadyRegistered("User with this identifier already exists")
            user_id = str(uuid.uuid4())
            self.rows[user_id] = {
                "id": user_id,
                "username": new_account.username,
                "email": new_account.email,
                "phone": new_account.phone,
                "email_verified": new_account.email_verified,
                "phone_verified": new_account.phone_verified,
                "password_hash": new_account.password_hash,
                "status": "active",
                "role": "user",
                "profile": new_account.profile,
                "login_attempts": 0,
                "lock_until": None,
                "created_at": datetime.fromtimestamp(self._clock(), tz=timezone.utc),
            }
            return self._account(self.rows[user_id])

    def find_login(self, identifier: Identifier) -> LoginRecord | None:
        column = "email" if identifier.kind is IdentifierKind.EMAIL else "phone"
        with self._lock:
            for row in self.rows.values():
                if row[column] == identifier.value:
                    return LoginRecord(
                        account=self._account(row),
                        password_hash=row["password_hash"],
                        login_attempts=row["login_attempts"],
                        lock_until=row["lock_until"],
                    )
        return None

    def register_failed_login(
        self, user_id: str, max_attempts: int, lock_until: datetime
    ) -> tuple[int, datetime | None]:
        with self._lock:
            row = self.rows[user_id]
            if row["login_attempts"] + 1 >= max_attempts:
                row["login_attempts"] = 0
                row["lock_until"] = lock_until
            else:
                row["login_attempts"] += 1
            return row["login_attempts"], row["lock_until"]

    def register_successful_login(self, user_id: str, password_hash: str | None = None) -> None:
        with self._lock:
            row = self.rows[user_id]
            row["login_attempts"] = 0
            row["lock_until"] = None
            if password_hash is not None:
                row["password_hash"] = password_hash

    @staticmethod
    def _account(row: dict) -> Account:
        profile = row["profile"]
        return Account(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            phone=row["phone"],
            status=row["status"],
            role=row["role"],
            profile=Profile(profile.first_name, profile.last_name, profile.experience_level),
            created_at=row["created_at"],
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def limiter(clock: FakeClock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(clock=clock)


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def users(clock: FakeClock) -> InMemoryUserRepository:
    return InMemoryUserRepository(clock)


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    """Cheap argon2id parameters so the suite stays fast."""
    return PasswordHasher(time_cost=1, memory_cost=8192, parallelism=1)


@pytest.fixture
def tokens(clock: FakeClock) -> FlowTokenCodec:
    return FlowTokenCodec(secret=TEST_JWT_SECRET, clock=clock)


@pytest.fixture
def otp_service(
    store: InMemorySessionStore,
    limiter: InMemoryRateLimiter,
    channel: RecordingChannel,
    clock: FakeClock,
) -> OtpService:
    return OtpService(
        store=store,
        limiter=limiter,
        cipher=OtpCipher(TEST_OTP_KEY),
        channels={IdentifierKind.PHONE: channel, IdentifierKind.EMAIL: channel},
        policy=OtpPolicy(),
        clock=clock,
    )


@pytest.fixture
def signup_context(
    store: InMemorySessionStore,
    limiter: InMemoryRateLimiter,
    otp_service: OtpService,
    tokens: FlowTokenCodec,
    users: InMemoryUserRepository,
    hasher: PasswordHasher,
    clock: FakeClock,
) -> SignupContext:
    return SignupContext(
        store=store,
        limiter=limiter,
        otp=otp_service,
        tokens=tokens,
        users=users,
        hasher=hasher,
        policy=SignupPolicy(),
        clock=clock,
    )


@pytest.fixture
def signup_service(signup_context: SignupContext) -> SignupService:
    return SignupService(signup_context)


@pytest.fixture
def login_service(
    users: InMemoryUserRepository,
    hasher: PasswordHasher,
    tokens: FlowTokenCodec,
    clock: FakeClock,
) -> LoginService:
    return LoginService(
        users=users, hasher=hasher, tokens=tokens, policy=LockoutPolicy(), clock=clock
    )
