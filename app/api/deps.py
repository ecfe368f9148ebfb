# app/api/deps.py
from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.session import get_session as _get_session
from app.services.stock_adjust_service import StockAdjustService


# ---------------------------
# 异步 Session 依赖（业务用）
# ---------------------------


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI 依赖友好的包装：直接 yield AsyncSession。
    测试里通过 app.dependency_overrides[get_session] 替换。
    """
    async for session in _get_session():
        yield session


def get_stock_adjust_service() -> StockAdjustService:
    """每个请求一个服务实例；默认截止时间取 DB_TIMEOUT_SECONDS。"""
    return StockAdjustService(default_timeout=get_settings().DB_TIMEOUT_SECONDS)
