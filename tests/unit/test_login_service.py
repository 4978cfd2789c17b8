"""
Unit tests for LoginService - failed-attempt counting and temporary lockout.
"""

from unittest.mock import MagicMock

import pytest
from jose import jwt

from insport_auth.domain import LoginService, PasswordHasher
from insport_auth.domain.exceptions import AccountLocked, InvalidCredentials, InvalidInput
from insport_auth.domain.ports import NewAccount, Profile


PHONE = "+15551234567"
PASSWORD = "Sw0rdfish!"
JWT_SECRET = "test-jwt-secret"


@pytest.fixture
def account_id(users, hasher: PasswordHasher) -> str:
    account = users.create_account(
        NewAccount(
            username="ada.lovelace.1a2b",
            password_hash=hasher.hash(PASSWORD),
            profile=Profile("Ada", "Lovelace"),
            phone=PHONE,
            phone_verified=True,
        )
    )
    return account.id


class TestLogin:
    """Tests for successful and failed logins."""

    def test_success_returns_access_token(self, login_service: LoginService, account_id: str) -> None:
        outcome = login_service.login(PHONE, PASSWORD)

        assert outcome.account.id == account_id
        claims = jwt.decode(outcome.access_token, JWT_SECRET, algorithms=["HS256"])
        assert claims["sub"] == account_id
        assert claims["role"] == "user"
        assert claims["typ"] == "access"

    def test_identifier_is_normalized(self, login_service: LoginService, account_id: str) -> None:
        assert login_service.login("+1 (555) 123-4567", PASSWORD).account.id == account_id

    def test_unknown_identifier(self, login_service: LoginService) -> None:
        with pytest.raises(InvalidCredentials, match="Invalid credentials"):
            login_service.login("+15550000000", PASSWORD)

    def test_wrong_password(self, login_service: LoginService, account_id: str, users) -> None:
        with pytest.raises(InvalidCredentials):
            login_service.login(PHONE, "wrong")
        assert users.rows[account_id]["login_attempts"] == 1

    def test_missing_identifier(self, login_service: LoginService) -> None:
        with pytest.raises(InvalidInput):
            login_service.login(None, PASSWORD)

    def test_inactive_account_rejected(self, login_service: LoginService, account_id: str, users) -> None:
        users.rows[account_id]["status"] = "suspended"
        with pytest.raises(InvalidCredentials):
            login_service.login(PHONE, PASSWORD)

    def test_success_resets_attempts(self, login_service: LoginService, account_id: str, users) -> None:
        for _ in range(3):
            with pytest.raises(InvalidCredentials):
                login_service.login(PHONE, "wrong")

        login_service.login(PHONE, PASSWORD)

        assert users.rows[account_id]["login_attempts"] == 0

    def test_outdated_hash_is_upgraded(self, login_service: LoginService, account_id: str, users) -> None:
        weaker = PasswordHasher(time_cost=2, memory_cost=8192, parallelism=1)
        users.rows[account_id]["password_hash"] = weaker.hash(PASSWORD)

        login_service.login(PHONE, PASSWORD)

        assert "t=1" in users.rows[account_id]["password_hash"]


class TestLockout:
    """Tests for the temporary lock after repeated failures."""

    def test_fifth_failure_locks(self, login_service: LoginService, account_id: str, users) -> None:
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                login_service.login(PHONE, "wrong")

        with pytest.raises(AccountLocked):
            login_service.login(PHONE, "wrong")

        assert users.rows[account_id]["login_attempts"] == 0
        assert users.rows[account_id]["lock_until"] is not None

    def test_correct_password_rejected_while_locked(self, login_service: LoginService, account_id: str) -> None:
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                login_service.login(PHONE, "wrong")
        with pytest.raises(AccountLocked):
            login_service.login(PHONE, "wrong")

        with pytest.raises(AccountLocked, match="temporarily locked"):
            login_service.login(PHONE, PASSWORD)

    def test_locked_attempt_still_runs_password_hash(
        self, login_service: LoginService, account_id: str, hasher: PasswordHasher
    ) -> None:
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                login_service.login(PHONE, "wrong")
        with pytest.raises(AccountLocked):
            login_service.login(PHONE, "wrong")

        spy = MagicMock(wraps=hasher)
        login_service.hasher = spy
        with pytest.raises(AccountLocked):
            login_service.login(PHONE, PASSWORD)

        spy.verify_dummy.assert_called_once_with(PASSWORD)
        spy.verify.assert_not_called()

    def test_lock_expires(self, login_service: LoginService, account_id: str, users, clock) -> None:
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                login_service.login(PHONE, "wrong")
        with pytest.raises(AccountLocked):
            login_service.login(PHONE, "wrong")

        clock.advance(7201)

        assert login_service.login(PHONE, PASSWORD).account.id == account_id
        assert users.rows[account_id]["lock_until"] is None
