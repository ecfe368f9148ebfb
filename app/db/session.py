# app/db/session.py
# 异步会话工厂 + FastAPI 依赖（get_session）
from __future__ import annotations

from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.db.base import Base, init_models
from app.db.engine import create_async_engine_safe


@lru_cache
def get_engine() -> AsyncEngine:
    """按配置懒加载全局 AsyncEngine（首次使用时创建）。"""
    settings = get_settings()
    return create_async_engine_safe(settings.DATABASE_URL, echo=settings.SQL_ECHO)


@lru_cache
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=get_engine(), class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：每个请求一个 AsyncSession，事务边界由库存引擎自行控制。"""
    async with get_session_maker()() as session:
        yield session


async def create_all_tables(engine: AsyncEngine | None = None) -> None:
    """dev 用：按 ORM 元数据建表（生产走 Alembic）。"""
    init_models()
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_engines() -> None:
    """关闭引擎（测试/生命周期）。"""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
