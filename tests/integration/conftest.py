"""Shared integration-test fixtures using Postgres and Redis testcontainers."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from alembic import command
from alembic.config import Config
from session_fakes import SERVICE_KEY, rsa_key_pair
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from docker.errors import DockerException


def _clear_dependency_caches() -> None:
    """Clear all relevant singleton/lru-cache dependencies between test phases."""
    from app.config import get_settings
    from app.core.sessions import get_session_manager
    from app.core.tokens import get_session_token_service
    from app.db.session import get_engine, get_session_factory
    from app.middleware.rate_limit import get_rate_limit_redis_client
    from app.services.audit_service import get_audit_service
    from app.services.device_control import get_device_control_service
    from app.services.session_validator import get_session_validator

    get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()
    get_rate_limit_redis_client.cache_clear()
    get_session_manager.cache_clear()
    get_session_token_service.cache_clear()
    get_audit_service.cache_clear()
    get_device_control_service.cache_clear()
    get_session_validator.cache_clear()


async def _close_async_client(client: Any) -> None:
    """Close async client instances regardless of redis-py close API version."""
    close = getattr(client, "aclose", None)
    if callable(close):
        await close()
        return

    close = getattr(client, "close", None)
    if callable(close):
        result = close()
        if hasattr(result, "__await__"):
            await result


async def _dispose_async_singletons() -> None:
    """Dispose loop-bound async resources before changing event loops."""
    from app.db.session import dispose_engine
    from app.middleware.rate_limit import get_rate_limit_redis_client

    if get_rate_limit_redis_client.cache_info().currsize:
        await _close_async_client(get_rate_limit_redis_client())
    await dispose_engine()


def _redis_connection_url(redis: RedisContainer) -> str:
    """Return a redis:// URL across testcontainers versions."""
    get_url = getattr(redis, "get_connection_url", None)
    if callable(get_url):
        redis_url = get_url()
    else:
        host = redis.get_container_host_ip()
        port = redis.get_exposed_port(6379)
        redis_url = f"redis://{host}:{port}"
    if not redis_url.endswith("/0"):
        redis_url = f"{redis_url}/0"
    return redis_url


def _postgres_async_url(postgres: PostgresContainer) -> str:
    """Return a postgresql+asyncpg URL across testcontainers versions."""
    try:
        # testcontainers>=4 supports explicitly disabling default psycopg2 driver.
        postgres_url = postgres.get_connection_url(driver=None)
    except TypeError:
        postgres_url = postgres.get_connection_url()

    if postgres_url.startswith("postgresql+"):
        postgres_url = "postgresql://" + postgres_url.split("://", 1)[1]

    return postgres_url.replace("postgresql://", "postgresql+asyncpg://", 1)


def _set_env_values(env_values: dict[str, str]) -> Callable[[], None]:
    """Apply env vars and return a restore callback."""
    original = {key: os.environ.get(key) for key in env_values}
    os.environ.update(env_values)

    def _restore() -> None:
        for key, value in original.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    return _restore


@pytest.fixture(scope="session")
def integration_env() -> Iterator[dict[str, str]]:
    """Start Postgres/Redis containers and configure app settings for integration tests."""
    try:
        postgres = PostgresContainer("postgres:16")
        redis = RedisContainer("redis:7")
        postgres.start()
        redis.start()
    except DockerException as exc:
        if os.environ.get("CI", "").lower() in {"1", "true", "yes"}:
            pytest.fail(
                f"Docker daemon unavailable in CI for testcontainers-backed integration tests: {exc}"
            )
        pytest.skip(f"Docker daemon unavailable for testcontainers-backed integration tests: {exc}")

    private_pem, public_pem = rsa_key_pair()
    database_url = _postgres_async_url(postgres)
    redis_url = _redis_connection_url(redis)

    env_values = {
        "APP__ENVIRONMENT": "development",
        "APP__SERVICE": "session-service",
        "APP__LOG_LEVEL": "INFO",
        "DATABASE__URL": database_url,
        "REDIS__URL": redis_url,
        "SESSION__CREATE_API_KEY": SERVICE_KEY,
        "JWT__PRIVATE_KEY_PEM": private_pem,
        "JWT__PUBLIC_KEY_PEM": public_pem,
        "RATE_LIMIT__DEFAULT_REQUESTS_PER_MINUTE": "10000",
        "RATE_LIMIT__CREATE_REQUESTS_PER_MINUTE": "10000",
        "RATE_LIMIT__REFRESH_REQUESTS_PER_MINUTE": "10000",
    }

    restore_env = _set_env_values(env_values)
    _clear_dependency_caches()

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(alembic_cfg, "head")

    try:
        yield {"database_url": database_url, "redis_url": redis_url}
    finally:
        try:
            _clear_dependency_caches()
        finally:
            restore_env()
            postgres.stop()
            redis.stop()


@pytest.fixture(scope="function")
async def reset_state(
    integration_env: dict[str, str],
) -> Iterator[None]:
    """Clear DB tables and flush Redis; isolate async singletons per event loop."""
    del integration_env
    from app.db.session import get_session_factory
    from app.middleware.rate_limit import get_rate_limit_redis_client
    from app.models.audit_event import AuditEvent
    from app.models.device import Device
    from app.models.device_conflict import DeviceConflict
    from app.models.session import UserSession

    await _dispose_async_singletons()
    _clear_dependency_caches()

    session_factory = get_session_factory()
    async with session_factory() as session:
        await session.execute(delete(AuditEvent))
        await session.execute(delete(DeviceConflict))
        await session.execute(delete(UserSession))
        await session.execute(delete(Device))
        await session.commit()

    await get_rate_limit_redis_client().flushdb()
    try:
        yield
    finally:
        await _dispose_async_singletons()
        _clear_dependency_caches()


@pytest.fixture(scope="function")
async def db_session_factory(reset_state: None) -> async_sessionmaker[AsyncSession]:
    """Expose async session factory bound to integration Postgres."""
    del reset_state
    from app.db.session import get_session_factory

    return get_session_factory()


@pytest.fixture(scope="function")
async def db_session(
    db_session_factory: async_sessionmaker[AsyncSession],
) -> Iterator[AsyncSession]:
    """Yield a write-capable async DB session for seeding and assertions."""
    async with db_session_factory() as session:
        yield session


@pytest.fixture(scope="function")
def app_factory(reset_state: None) -> Callable[[], Any]:
    """Build isolated FastAPI app instances for integration tests."""
    del reset_state
    from app.main import create_app

    def _factory() -> Any:
        return create_app()

    return _factory
