# tests/conftest.py
from __future__ import annotations

import os
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# ============================================================
# ★ 在 import app.* 之前设置最小环境：DATABASE_URL 为必填项
#   （测试本身不使用全局引擎，走下面每用例独立的 SQLite 文件库）
# ============================================================
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-stock.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from app.db.engine import create_async_engine_safe  # noqa: E402
from app.db.session import create_all_tables  # noqa: E402
from app.obs.stock_events import NullStockEventSink  # noqa: E402
from app.services.stock_level_engine import StockLevelEngine  # noqa: E402


# =========================================
# 每用例独立 Engine（SQLite 文件库 + NullPool，避免跨 loop）
#   SQLite 事务由 BEGIN IMMEDIATE 开启，作为行锁替身
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine_safe(
        f"sqlite+aiosqlite:///{tmp_path / 'stock.db'}",
        poolclass=NullPool,
    )
    await create_all_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    标准 Session：不预开事务（事务边界由库存引擎自己控制），用例结束兜底回滚。
    """
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


@pytest.fixture
def stock_engine() -> StockLevelEngine:
    return StockLevelEngine(sink=NullStockEventSink())


@pytest.fixture
def pair() -> tuple[uuid.UUID, uuid.UUID]:
    """一个全新的 (variant_id, warehouse_id) 组合。"""
    return uuid.uuid4(), uuid.uuid4()


class RecordingSink:
    """记录所有事件，便于断言引擎的可观测性输出。"""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def emit(self, event: str, **fields) -> None:
        self.events.append((event, fields))

    @property
    def names(self) -> list[str]:
        return [e for e, _ in self.events]


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()
