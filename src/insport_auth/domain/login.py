"""
Login domain service - failed-attempt counting and temporary lockout.

Lockout rules:
- Every wrong password increments ``login_attempts``
- Reaching ``max_attempts`` sets ``lock_until = now + lock_duration`` and
  resets the counter
- While ``lock_until`` is in the future every attempt fails with
  AccountLocked, whether or not the password is correct
- A successful login resets the counter and clears the lock

Unknown identifiers still run one argon2 verification (against a dummy
hash) so timing does not reveal which identifiers have accounts.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .crypto import FlowTokenCodec, PasswordHasher
from .exceptions import AccountLocked, InvalidCredentials
from .identifiers import parse_identifier
from .ports import Account, UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lock_duration_seconds: int = 7200


@dataclass(frozen=True)
class LoginOutcome:
    account: Account
    access_token: str


@dataclass
class LoginService:
    """Domain service for password login with lockout."""

    users: UserRepository
    hasher: PasswordHasher
    tokens: FlowTokenCodec
    policy: LockoutPolicy = LockoutPolicy()
    clock: Callable[[], float] = time.time

    def login(self, raw_identifier: str | None, password: str | None) -> LoginOutcome:
        """
        Authenticate by phone-or-email and password.

        Raises:
            InvalidCredentials: Unknown identifier, inactive account or wrong password
            AccountLocked: Account is locked, or this failure locked it
        """
        identifier = parse_identifier(raw_identifier)
        password = password or ""
        now = self._now()

        record = self.users.find_login(identifier)
        if record is None:
            self.hasher.verify_dummy(password)
            raise InvalidCredentials("Invalid credentials")

        if record.lock_until is not None and record.lock_until > now:
            logger.warning("Login attempt on locked account %s", record.account.id)
            self.hasher.verify_dummy(password)
            raise AccountLocked("Account is temporarily locked. Try again later.")

        if not self.hasher.verify(record.password_hash, password):
            attempts, lock_until = self.users.register_failed_login(
                record.account.id,
                self.policy.max_attempts,
                now + timedelta(seconds=self.policy.lock_duration_seconds),
            )
            if lock_until is not None and lock_until > now:
                logger.warning("Account %s locked after repeated failures", record.account.id)
                raise AccountLocked("Account is temporarily locked. Try again later.")
            logger.info("Failed login for %s (%d attempts)", record.account.id, attempts)
            raise InvalidCredentials("Invalid credentials")

        if record.account.status != "active":
            raise InvalidCredentials("Invalid credentials")

        rehash = None
        if self.hasher.needs_rehash(record.password_hash):
            rehash = self.hasher.hash(password)
        self.users.register_successful_login(record.account.id, rehash)

        logger.info("Login succeeded for %s", record.account.id)
        token = self.tokens.issue_access_token(record.account.id, record.account.role)
        return LoginOutcome(account=record.account, access_token=token)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)
