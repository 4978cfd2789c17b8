"""
Shared fixtures for adversarial tests.

Provides common test infrastructure for race condition, brute force and
timing tests. Most tests run on the in-memory adapters; the PostgreSQL
pool is only opened by tests that ask for it and skips without a database.
"""

from collections.abc import Callable, Generator

import psycopg
import pytest
from psycopg_pool import ConnectionPool

from insport_auth.adapters.repository import run_migrations
from insport_auth.config.settings import get_settings
from insport_auth.domain import SignupService
from insport_auth.domain.identifiers import Phone

# Module-level marker for all adversarial tests
pytestmark = pytest.mark.adversarial

PASSWORD = "Sw0rdfish!"


@pytest.fixture(scope="module")
def pool() -> Generator[ConnectionPool, None, None]:
    """Create connection pool for adversarial tests, or skip without a database."""
    settings = get_settings()
    try:
        psycopg.connect(settings.database_url, connect_timeout=2).close()
    except psycopg.OperationalError as e:
        pytest.skip(f"PostgreSQL not reachable: {e}")

    pool = ConnectionPool(
        conninfo=settings.database_url,
        min_size=1,
        max_size=10,
        open=True,
    )
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def clean_database(pool: ConnectionPool) -> ConnectionPool:
    """Clean users table before a test that writes to PostgreSQL."""
    with pool.connection() as conn:
        conn.execute("DELETE FROM users")
    return pool


@pytest.fixture
def verified_draft(signup_service: SignupService, channel) -> Callable[[str], None]:
    """Drive a phone number through OTP verification and enter-details."""

    def prepare(phone: str) -> None:
        signup_service.create_account(phone)
        signup_service.verify_otp(phone, channel.last_code(Phone(phone)))
        signup_service.enter_details(phone, "Ada", "Lovelace")

    return prepare


@pytest.fixture
def registered(verified_draft, signup_service: SignupService) -> Callable[[str], None]:
    """Create a complete account for a phone number."""

    def register(phone: str) -> None:
        verified_draft(phone)
        signup_service.set_password(phone, PASSWORD, PASSWORD)

    return register
