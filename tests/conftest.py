"""
测试公共配置

- 使用内存 SQLite（aiosqlite + StaticPool），每个测试独立建表
- Vault 使用内存提供者，每个测试独立的存储字典
- 通过 dependency_overrides 替换数据库会话和 Vault 客户端
"""

import os

# 必须在导入 portal 之前设置，get_settings() 会缓存第一次读取的配置
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["VAULT_PROVIDER"] = "none"

from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from portal import models  # noqa: F401
from portal.db.base import Base
from portal.db.session import get_db
from portal.infra.vault import MemoryVaultProvider, VaultClient, get_vault
from portal.main import app

ADMIN_TOKEN = "test-admin-token"
ADMIN_HEADERS = {"X-Admin-Token": ADMIN_TOKEN}


# ==================== 数据库 ====================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ==================== Vault ====================

@pytest.fixture
def vault_store() -> dict[str, str]:
    """内存 Vault 的底层存储，测试中可以直接检查写入的内容"""
    return {}


@pytest.fixture
def vault(vault_store) -> VaultClient:
    return VaultClient(provider=MemoryVaultProvider(vault_store))


@pytest.fixture
def no_vault() -> VaultClient:
    """未配置 Vault 提供者的客户端"""
    return VaultClient(provider=None)


# ==================== HTTP 客户端 ====================

@asynccontextmanager
async def _make_client(session_factory, vault_client: VaultClient, headers: dict | None = None):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_vault():
        yield vault_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_vault] = override_get_vault
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with AsyncClient(
            transport=transport,
            base_url="http://test",
            headers=headers if headers is not None else ADMIN_HEADERS,
        ) as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
async def client(session_factory, vault):
    """带管理员 Token 和内存 Vault 的客户端"""
    async with _make_client(session_factory, vault) as c:
        yield c


@pytest.fixture
async def client_without_vault(session_factory, no_vault):
    """带管理员 Token、未配置 Vault 的客户端"""
    async with _make_client(session_factory, no_vault) as c:
        yield c


@pytest.fixture
async def anonymous_client(session_factory, vault):
    """不带任何认证头的客户端"""
    async with _make_client(session_factory, vault, headers={}) as c:
        yield c
