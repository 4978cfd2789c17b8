"""
Shared fixtures for integration tests.

Requires PostgreSQL and Redis (via docker-compose or local services).
Tests are skipped when either is unreachable.
"""

from collections.abc import Generator

import psycopg
import pytest
import redis
from psycopg_pool import ConnectionPool

from insport_auth.adapters.repository import run_migrations
from insport_auth.adapters.session import create_redis_client
from insport_auth.config.settings import get_settings

pytestmark = pytest.mark.integration


@pytest.fixture(scope="session")
def pool() -> Generator[ConnectionPool, None, None]:
    """Create connection pool and apply migrations, or skip without a database."""
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


@pytest.fixture(autouse=True)
def clean_database(request: pytest.FixtureRequest) -> Generator[None, None, None]:
    """Clean users (and profiles via cascade) before each test that uses the database."""
    if "pool" in request.fixturenames:
        pool = request.getfixturevalue("pool")
        with pool.connection() as conn:
            conn.execute("DELETE FROM users")
    yield


@pytest.fixture(scope="session")
def redis_client() -> Generator[redis.Redis, None, None]:
    """Create Redis client, or skip without a server."""
    settings = get_settings()
    client = create_redis_client(settings.redis_url, socket_timeout=2.0)
    try:
        client.ping()
    except redis.RedisError as e:
        pytest.skip(f"Redis not reachable: {e}")
    yield client
    client.close()


@pytest.fixture
def clean_redis(redis_client: redis.Redis) -> Generator[redis.Redis, None, None]:
    """Remove the service's keys before and after each test."""
    for key in redis_client.scan_iter("insport:*"):
        redis_client.delete(key)
    yield redis_client
    for key in redis_client.scan_iter("insport:*"):
        redis_client.delete(key)
