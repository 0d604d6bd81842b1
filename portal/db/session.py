"""
数据库引擎与会话

路由通过 Depends(get_db) 取得会话，测试中用 dependency_overrides 替换为 SQLite 内存库。
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from portal.config import get_settings
from portal.db.base import Base


def build_engine(url: str) -> AsyncEngine:
    """PostgreSQL 使用连接池参数，SQLite 保持默认"""
    options: dict[str, Any] = {}
    if not url.startswith("sqlite"):
        options.update(
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=1800,
        )
    return create_async_engine(url, echo=False, **options)


engine = build_engine(get_settings().database_url)

# 提交后对象属性仍可读取，路由中 commit 之后直接序列化
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


async def init_models() -> None:
    """
    按 ORM 定义建表（dev/test）

    只创建缺失的表，不修改已有表结构；正式环境走 Alembic 迁移。
    """
    from portal import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
