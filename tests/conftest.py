"""Shared pytest fixtures for payment channel tests."""

from __future__ import annotations

import os
import warnings
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import ec

from paychan.crypto.key_utils import address_from_public_key_der_b64, public_key_der_b64
from paychan.infrastructure.database import DatabaseClient
from paychan.infrastructure.storage import RedisKeyValueStore


@pytest.fixture
def payer_private_key() -> ec.EllipticCurvePrivateKey:
    """Generate a payer signing key for testing."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def payee_private_key() -> ec.EllipticCurvePrivateKey:
    """Generate a payee signing key for testing."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def payer_public_key_der_b64(payer_private_key: ec.EllipticCurvePrivateKey) -> str:
    return public_key_der_b64(payer_private_key.public_key())


@pytest.fixture
def payee_public_key_der_b64(payee_private_key: ec.EllipticCurvePrivateKey) -> str:
    return public_key_der_b64(payee_private_key.public_key())


@pytest.fixture
def payer_address(payer_public_key_der_b64: str) -> str:
    return address_from_public_key_der_b64(payer_public_key_der_b64)


@pytest.fixture
def payee_address(payee_public_key_der_b64: str) -> str:
    return address_from_public_key_der_b64(payee_public_key_der_b64)


class TestDatabaseSettings:
    """Test settings for Redis connection."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url


@pytest_asyncio.fixture
async def redis_db_client() -> AsyncGenerator[DatabaseClient, None]:
    """Create a Redis database client for testing.

    Uses database 15 by default, or TEST_REDIS_URL if set. Tests using it are
    skipped when Redis is not reachable.
    """
    test_redis_url = os.getenv("TEST_REDIS_URL", "redis://localhost:6379/15")
    client = DatabaseClient(TestDatabaseSettings(database_url=test_redis_url))
    client.initialize_database()

    try:
        async with client.get_connection() as conn:
            await conn.ping()
    except Exception as e:
        warnings.warn(
            f"Redis not available at {test_redis_url}: {e}. "
            "Tests requiring Redis will be skipped.",
            UserWarning,
        )
        await client.close()
        pytest.skip(f"Redis not available: {e}")

    yield client

    async with client.get_connection() as conn:
        await conn.flushdb()
    await client.close()


@pytest_asyncio.fixture
async def redis_store(redis_db_client: DatabaseClient) -> RedisKeyValueStore:
    """Create a Redis-backed key-value store for testing."""
    return RedisKeyValueStore(redis_db_client)
