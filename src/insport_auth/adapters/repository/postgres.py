"""
PostgreSQL repository adapter - Implements UserRepository protocol.

This module provides the PostgreSQL implementation of the domain's
user repository port using psycopg3 with raw SQL.

Consistency Design:
-------------------
1. **Single transaction for User + UserProfile**: create_account inserts
   both rows inside ``conn.transaction()``. Any failure rolls back both,
   so no user can exist without its profile.

2. **Unique constraints as final arbiter**: the pre-checks in the domain
   leave a race window between check and commit. The UNIQUE constraints
   on email, phone_number and username close it; the violated constraint
   name decides which domain error is raised.

3. **Atomic failed-login counting**: register_failed_login increments,
   locks and resets in one UPDATE ... RETURNING, so concurrent wrong
   passwords cannot lose increments.
"""

import logging
from datetime import datetime
from pathlib import Path

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from insport_auth.domain.exceptions import (
    AccountPersistenceFailed,
    IdentifierAlreadyRegistered,
    UsernameTaken,
)
from insport_auth.domain.identifiers import Identifier, IdentifierKind
from insport_auth.domain.ports import Account, LoginRecord, NewAccount, Profile

logger = logging.getLogger(__name__)

_USERNAME_CONSTRAINT = "users_username_key"

_EXISTS_SQL = {
    IdentifierKind.EMAIL: "SELECT 1 FROM users WHERE email = %s",
    IdentifierKind.PHONE: "SELECT 1 FROM users WHERE phone_number = %s",
}

_LOGIN_SELECT = """
    SELECT u.id, u.username, u.email, u.phone_number, u.status, u.role, u.created_at,
           u.password_hash, u.login_attempts, u.lock_until,
           p.first_name, p.last_name, p.experience_level
    FROM users u
    JOIN user_profiles p ON p.user_id = u.id
"""

_LOGIN_SQL = {
    IdentifierKind.EMAIL: _LOGIN_SELECT + " WHERE u.email = %s",
    IdentifierKind.PHONE: _LOGIN_SELECT + " WHERE u.phone_number = %s",
}


class PostgresUserRepository:
    """
    Implements UserRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    def identifier_registered(self, identifier: Identifier) -> bool:
        with self._pool.connection() as conn:
            row = conn.execute(_EXISTS_SQL[identifier.kind], (identifier.value,)).fetchone()
            return row is not None

    def create_account(self, new_account: NewAccount) -> Account:
        """
        Create the User and its UserProfile in one transaction.

        Args:
            new_account: Username, argon2 hash, contacts and profile fields

        Returns:
            The created account (no password hash)

        Raises:
            IdentifierAlreadyRegistered: email/phone unique violation at commit time
            UsernameTaken: username unique violation
            AccountPersistenceFailed: any other database failure
        """
        insert_user_sql = """
            INSERT INTO users (
                username, email, phone_number, email_verified, phone_verified,
                password_hash, password_changed_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, NOW())
            RETURNING id, username, email, phone_number, status, role, created_at
        """
        insert_profile_sql = """
            INSERT INTO user_profiles (user_id, first_name, last_name, experience_level)
            VALUES (%s, %s, %s, %s)
        """

        profile = new_account.profile
        try:
            with self._pool.connection() as conn:
                with conn.transaction(), conn.cursor(row_factory=dict_row) as cursor:
                    cursor.execute(
                        insert_user_sql,
                        (
                            new_account.username,
                            new_account.email,
                            new_account.phone,
                            new_account.email_verified,
                            new_account.phone_verified,
                            new_account.password_hash,
                        ),
                    )
                    row = cursor.fetchone()
                    cursor.execute(
                        insert_profile_sql,
                        (row["id"], profile.first_name, profile.last_name, profile.experience_level),
                    )
        except psycopg.errors.UniqueViolation as e:
            if e.diag.constraint_name == _USERNAME_CONSTRAINT:
                raise UsernameTaken(new_account.username) from None
            logger.warning("Commit-time uniqueness violation on %s", e.diag.constraint_name)
            raise IdentifierAlreadyRegistered("User with this identifier already exists") from None
        except psycopg.Error as e:
            logger.error("User creation transaction aborted: %s", e)
            raise AccountPersistenceFailed("User creation failed") from e

        return Account(
            id=str(row["id"]),
            username=row["username"],
            email=row["email"],
            phone=row["phone_number"],
            status=row["status"],
            role=row["role"],
            profile=Profile(
                first_name=profile.first_name,
                last_name=profile.last_name,
                experience_level=profile.experience_level,
            ),
            created_at=row["created_at"],
        )

    def find_login(self, identifier: Identifier) -> LoginRecord | None:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(_LOGIN_SQL[identifier.kind], (identifier.value,))
            row = cursor.fetchone()

        if row is None:
            return None
        account = Account(
            id=str(row["id"]),
            username=row["username"],
            email=row["email"],
            phone=row["phone_number"],
            status=row["status"],
            role=row["role"],
            profile=Profile(
                first_name=row["first_name"],
                last_name=row["last_name"],
                experience_level=row["experience_level"],
            ),
            created_at=row["created_at"],
        )
        return LoginRecord(
            account=account,
            password_hash=row["password_hash"],
            login_attempts=row["login_attempts"],
            lock_until=row["lock_until"],
        )

    def register_failed_login(
        self, user_id: str, max_attempts: int, lock_until: datetime
    ) -> tuple[int, datetime | None]:
        sql = """
            UPDATE users
            SET login_attempts = CASE
                    WHEN login_attempts + 1 >= %(max)s THEN 0
                    ELSE login_attempts + 1
                END,
                lock_until = CASE
                    WHEN login_attempts + 1 >= %(max)s THEN %(lock_until)s
                    ELSE lock_until
                END,
                updated_at = NOW()
            WHERE id = %(id)s
            RETURNING login_attempts, lock_until
        """
        with self._pool.connection() as conn:
            row = conn.execute(
                sql, {"max": max_attempts, "lock_until": lock_until, "id": user_id}
            ).fetchone()
        if row is None:
            return 0, None
        return row[0], row[1]

    def register_successful_login(self, user_id: str, password_hash: str | None = None) -> None:
        sql = """
            UPDATE users
            SET login_attempts = 0,
                lock_until = NULL,
                last_login = NOW(),
                password_hash = COALESCE(%s, password_hash),
                updated_at = NOW()
            WHERE id = %s
        """
        with self._pool.connection() as conn:
            conn.execute(sql, (password_hash, user_id))


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: src/insport_auth/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parents[4] / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
